"""
Local-disk blob store.

Blobs live under ``UPLOAD_DIR/<bucket>/<owner_id>/<random><ext>`` and are
addressed by URL ``<PUBLIC_BASE_URL>/files/<bucket>/<owner_id>/<name>``. The
owner segment is what the read policy in `can_read_blob` keys on.
"""
from __future__ import annotations

import mimetypes
import os
import re
from typing import Any

from sqlalchemy import or_, select

from models import Message
from utils import ApiError, ROLE_HR, sanitize_filename


BUCKETS = ("documents", "profile-images", "message-attachments", "cvs")
PUBLIC_BUCKETS = ("profile-images", "cvs")

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9._-]+$")


def _check_segment(value: str, what: str) -> str:
    v = str(value or "").strip()
    if not v or v in {".", ".."} or not _SEGMENT_RE.match(v):
        raise ApiError("BAD_REQUEST", f"Invalid {what}")
    return v


def split_path(path: str) -> tuple[str, str, str]:
    parts = [p for p in str(path or "").strip().strip("/").split("/") if p]
    if len(parts) != 3:
        raise ApiError("BAD_REQUEST", "Invalid file path")
    bucket, owner, name = parts
    if bucket not in BUCKETS:
        raise ApiError("BAD_REQUEST", "Unknown bucket")
    return bucket, _check_segment(owner, "owner"), _check_segment(name, "file name")


def path_from_url(url: str) -> str:
    u = str(url or "").strip()
    marker = "/files/"
    idx = u.find(marker)
    if idx < 0:
        raise ApiError("BAD_REQUEST", "Not a blob URL")
    path = u[idx + len(marker) :].split("?", 1)[0]
    split_path(path)
    return path


class BlobStore:
    def __init__(self, root: str, public_base_url: str = ""):
        self.root = os.path.abspath(root or "./uploads")
        self.public_base_url = str(public_base_url or "").rstrip("/")

    @classmethod
    def from_config(cls, cfg: Any) -> "BlobStore":
        return cls(getattr(cfg, "UPLOAD_DIR", "./uploads"), getattr(cfg, "PUBLIC_BASE_URL", ""))

    def _disk_path(self, path: str) -> str:
        bucket, owner, name = split_path(path)
        full = os.path.abspath(os.path.join(self.root, bucket, owner, name))
        if not full.startswith(self.root + os.sep):
            raise ApiError("BAD_REQUEST", "Invalid file path")
        return full

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}/files/{path}"

    def new_path(self, bucket: str, owner_id: str, filename: str) -> str:
        if bucket not in BUCKETS:
            raise ApiError("BAD_REQUEST", "Unknown bucket")
        _name, ext = os.path.splitext(sanitize_filename(filename or ""))
        return f"{bucket}/{_check_segment(owner_id, 'owner')}/{os.urandom(16).hex()}{ext.lower()[:10]}"

    def put(self, path: str, data: bytes) -> str:
        full = self._disk_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data or b"")
        except OSError as e:
            raise ApiError("UPSTREAM_FAILURE", "Blob store write failed") from e
        return self.url_for(path)

    def get(self, url: str) -> bytes:
        full = self._disk_path(path_from_url(url))
        if not os.path.isfile(full):
            raise ApiError("NOT_FOUND", "File not found")
        try:
            with open(full, "rb") as f:
                return f.read()
        except OSError as e:
            raise ApiError("UPSTREAM_FAILURE", "Blob store read failed") from e

    def open_path(self, path: str) -> tuple[str, str]:
        """Disk path and mime type for streaming a stored blob."""
        full = self._disk_path(path)
        if not os.path.isfile(full):
            raise ApiError("NOT_FOUND", "File not found")
        mime, _enc = mimetypes.guess_type(full)
        return full, mime or "application/octet-stream"


def can_read_blob(db, *, actor_id: str, role: str, path: str) -> bool:
    bucket, owner, _name = split_path(path)
    if bucket in PUBLIC_BUCKETS:
        return True
    if not actor_id:
        return False
    if owner == actor_id or role == ROLE_HR:
        return True
    if bucket == "message-attachments":
        suffix = "/files/" + path
        rows = db.execute(
            select(Message.attachment_url).where(
                Message.attachment_url.like(f"%{suffix}"),
                or_(Message.sender_id == actor_id, Message.receiver_id == actor_id),
            )
        ).first()
        return rows is not None
    return False
