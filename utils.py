from __future__ import annotations

import hashlib
import json
import re
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


ROLE_CANDIDATE = "candidate"
ROLE_HR = "hr"
KNOWN_ROLES = {ROLE_CANDIDATE, ROLE_HR}

_HTTP_STATUS_BY_CODE = {
    "BAD_REQUEST": 400,
    "CONSTRAINT_VIOLATION": 400,
    "AUTH_INVALID": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "RATE_LIMITED": 429,
    "UPSTREAM_FAILURE": 502,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, *, http_status: int | None = None, field: str = ""):
        super().__init__(message)
        self.code = str(code or "INTERNAL").upper()
        self.message = str(message or "")
        self.http_status = int(http_status or _HTTP_STATUS_BY_CODE.get(self.code, 400))
        self.field = str(field or "")


@dataclass(frozen=True)
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str


def ok(data: Any):
    return {"ok": True, "data": data}, 200


def err(code: str, message: str, *, http_status: int = 400, field: str = ""):
    error: dict[str, Any] = {"code": code, "message": message}
    if field:
        error["field"] = field
    return {"ok": False, "error": error}, http_status


def iso_utc_now() -> str:
    return to_iso_utc(datetime.now(timezone.utc))


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime_maybe(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value or "").strip()
    if not s:
        return None
    try:
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_monotonic() -> float:
    return time.monotonic()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def normalize_role(role: Any) -> str:
    r = str(role or "").strip().lower()
    return r if r in KNOWN_ROLES else ""


def parse_json_body(raw: str) -> dict[str, Any]:
    if not raw or not str(raw).strip():
        raise ApiError("BAD_REQUEST", "Empty body")
    try:
        body = json.loads(raw)
    except json.JSONDecodeError:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "Body must be a JSON object")
    return body


_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(name: str) -> str:
    cleaned = _SAFE_NAME_RE.sub("_", str(name or "").strip()).strip("._")
    return cleaned[:120] or "file"


_REDACT_KEYS = {"token", "idtoken", "sessiontoken", "password", "content", "answers"}


def redact_for_audit(data: Any, *, depth: int = 0) -> Any:
    if depth > 4:
        return "..."
    if isinstance(data, dict):
        out = {}
        for k, v in data.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "[redacted]"
            else:
                out[k] = redact_for_audit(v, depth=depth + 1)
        return out
    if isinstance(data, list):
        return [redact_for_audit(v, depth=depth + 1) for v in data[:50]]
    if isinstance(data, str) and len(data) > 500:
        return data[:500] + "..."
    return data


class SimpleRateLimiter:
    """Sliding-window limiter keyed by caller; limits are `(max_calls, window_seconds)`."""

    def __init__(self):
        self._hits: dict[str, deque] = {}
        self._lock = threading.Lock()

    def check(self, key: str, limit: tuple[int, int]) -> None:
        max_calls, window_s = limit
        if max_calls <= 0:
            return
        now = now_monotonic()
        with self._lock:
            q = self._hits.setdefault(key, deque())
            while q and now - q[0] > window_s:
                q.popleft()
            if len(q) >= max_calls:
                raise ApiError("RATE_LIMITED", "Too many requests")
            q.append(now)
