from __future__ import annotations

import json
import os
from typing import Any, Optional

from flask import g, has_request_context

from models import AuditLog
from policies import Actor, PolicyContext
from utils import ApiError, AuthContext, iso_utc_now, normalize_role, parse_datetime_maybe, to_iso_utc


def policy_ctx(auth: Optional[AuthContext], db) -> PolicyContext:
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")
    return PolicyContext(actor=Actor(user_id=str(auth.userId or ""), role=normalize_role(auth.role)), db=db)


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str = "",
    remark: str = "",
    actor: Optional[AuthContext] = None,
    at: str = "",
    meta: Optional[dict[str, Any]] = None,
) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(actor.userId) if actor else "SYSTEM",
            actorRole=str(actor.role) if actor else "SYSTEM",
            at=at or iso_utc_now(),
            correlationId=str(getattr(g, "request_id", "") or "") if has_request_context() else "",
            metaJson=json.dumps(meta or {}, default=str),
        )
    )


# ---- input parsing -----------------------------------------------------------


def req_str(data: dict, key: str, *, max_len: int = 5000) -> str:
    v = str((data or {}).get(key) or "").strip()
    if not v:
        raise ApiError("BAD_REQUEST", f"Missing {key}", field=key)
    if len(v) > max_len:
        raise ApiError("BAD_REQUEST", f"{key} is too long", field=key)
    return v


def opt_str(data: dict, key: str, *, max_len: int = 5000) -> Optional[str]:
    raw = (data or {}).get(key)
    if raw is None:
        return None
    v = str(raw).strip()
    if len(v) > max_len:
        raise ApiError("BAD_REQUEST", f"{key} is too long", field=key)
    return v or None


def opt_int(data: dict, key: str) -> Optional[int]:
    raw = (data or {}).get(key)
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ApiError("BAD_REQUEST", f"{key} must be an integer", field=key)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", f"{key} must be an integer", field=key)


def opt_bool(data: dict, key: str) -> Optional[bool]:
    raw = (data or {}).get(key)
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "y", "on"}


def opt_datetime(data: dict, key: str) -> Optional[str]:
    raw = (data or {}).get(key)
    if raw is None or str(raw).strip() == "":
        return None
    dt = parse_datetime_maybe(raw)
    if dt is None:
        raise ApiError("BAD_REQUEST", f"{key} must be an ISO date", field=key)
    return to_iso_utc(dt)


def str_list(data: dict, key: str) -> Optional[list[str]]:
    raw = (data or {}).get(key)
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise ApiError("BAD_REQUEST", f"{key} must be a list", field=key)
    out: list[str] = []
    for item in raw:
        s = str(item or "").strip()
        if s and s not in out:
            out.append(s)
    return out


def pick_changes(data: dict, mapping: dict[str, tuple[str, Any]]) -> dict[str, Any]:
    """Map camelCase inputs onto columns. `mapping`: inputKey -> (column, parser)."""
    changes: dict[str, Any] = {}
    for key, (column, parser) in mapping.items():
        if key in (data or {}):
            changes[column] = parser(data, key)
    return changes


def paging(data: dict, *, default: int = 50, maximum: int = 200) -> tuple[int, int]:
    limit = opt_int(data, "limit") or default
    offset = opt_int(data, "offset") or 0
    return max(1, min(maximum, limit)), max(0, offset)


# ---- output ------------------------------------------------------------------


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def serialize(row: Any, *, exclude: tuple[str, ...] = ()) -> dict[str, Any]:
    if row is None:
        return {}
    out: dict[str, Any] = {}
    for col in row.__table__.columns:
        if col.key in exclude:
            continue
        out[_camel(col.key)] = getattr(row, col.key)
    return out
