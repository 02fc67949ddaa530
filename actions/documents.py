from __future__ import annotations

from typing import Any

from sqlalchemy import select

import store
from actions.helpers import opt_datetime, opt_str, paging, pick_changes, policy_ctx, req_str, serialize
from models import APPROVAL_STATUSES, Document, DocumentApproval, DocumentVersion
from storage import path_from_url, split_path
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


def _own_document_url(data: dict, key: str, actor_id: str) -> str:
    url = req_str(data, key, max_len=2000)
    bucket, owner, _name = split_path(path_from_url(url))
    if bucket != "documents" or owner != actor_id:
        raise ApiError("FORBIDDEN", "File does not belong to you", field=key)
    return url


def serialize_document(d: Document) -> dict[str, Any]:
    out = serialize(d)
    latest = d.approvals[-1] if d.approvals else None
    out["lastReview"] = serialize(latest) if latest is not None else None
    return out


def document_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    now = iso_utc_now()
    url = _own_document_url(data, "fileUrl", auth.userId)
    doc = Document(
        id=new_uuid(),
        title=req_str(data, "title", max_len=300),
        type=str((data or {}).get("type") or "").strip().lower(),
        file_url=url,
        version=1,
        status="pending",
        expiry_date=opt_datetime(data, "expiryDate"),
        user_id=auth.userId,
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, doc)
    store.insert_row(
        db,
        ctx,
        DocumentVersion(id=new_uuid(), document_id=doc.id, version=1, file_url=url, created_at=now),
    )
    return serialize_document(doc)


def document_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}
    stmt = select(Document)
    user_id = str(d.get("userId") or "").strip()
    if not ctx.actor.is_hr:
        user_id = ctx.actor.user_id
    if user_id:
        stmt = stmt.where(Document.user_id == user_id)
    for key, col in (("status", Document.status), ("type", Document.type)):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    stmt = stmt.order_by(Document.created_at.desc(), Document.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    return {"items": [serialize_document(x) for x in rows], "limit": limit, "offset": offset}


def document_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    changes = pick_changes(
        data,
        {
            "title": ("title", lambda d, k: req_str(d, k, max_len=300)),
            "type": ("type", lambda d, k: str(d.get(k) or "").strip().lower()),
            "expiryDate": ("expiry_date", opt_datetime),
        },
    )
    store.update_row(db, ctx, doc, changes)
    return serialize_document(doc)


def document_replace_file(data, auth: AuthContext | None, db, cfg):
    """New file version: appends a DocumentVersion and sends the document back to review."""
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    url = _own_document_url(data, "fileUrl", auth.userId)
    version = int(doc.version or 1) + 1

    changes: dict[str, Any] = {"file_url": url, "version": version, "status": "pending"}
    if "expiryDate" in (data or {}):
        changes["expiry_date"] = opt_datetime(data, "expiryDate")
    store.update_row(db, ctx, doc, changes)
    store.insert_row(
        db,
        ctx,
        DocumentVersion(id=new_uuid(), document_id=doc.id, version=version, file_url=url, created_at=iso_utc_now()),
    )
    return serialize_document(doc)


def document_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    store.delete_row(db, ctx, doc)
    return {"deleted": True, "id": doc.id}


def document_versions(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    stmt = select(DocumentVersion).where(DocumentVersion.document_id == doc.id).order_by(DocumentVersion.version)
    return {"items": [serialize(v) for v in store.list_visible(db, ctx, stmt)]}


def document_review(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    status = req_str(data, "status").lower()
    if status not in APPROVAL_STATUSES:
        raise ApiError("CONSTRAINT_VIOLATION", f"status must be one of: {', '.join(APPROVAL_STATUSES)}", field="status")

    approval = DocumentApproval(
        id=new_uuid(),
        document_id=doc.id,
        approver_id=auth.userId,
        status=status,
        comments=opt_str(data, "comments"),
        created_at=iso_utc_now(),
    )
    store.insert_row(db, ctx, approval)
    store.update_row(db, ctx, doc, {"status": status})
    db.refresh(doc)
    return serialize_document(doc)


def document_approvals(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    doc = store.get_visible(db, ctx, Document, (data or {}).get("id"))
    stmt = select(DocumentApproval).where(DocumentApproval.document_id == doc.id).order_by(DocumentApproval.created_at)
    return {"items": [serialize(a) for a in store.list_visible(db, ctx, stmt)]}
