from __future__ import annotations

from typing import Any

from sqlalchemy import and_, or_, select

import store
from actions.helpers import opt_datetime, opt_str, paging, policy_ctx, req_str, serialize
from models import Application, Message, Profile
from storage import path_from_url, split_path
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


def _names(db, ids: set[str]) -> dict[str, str]:
    if not ids:
        return {}
    return {p.id: p.display_name for p in db.execute(select(Profile).where(Profile.id.in_(ids))).scalars()}


def serialize_message(m: Message, names: dict[str, str]) -> dict[str, Any]:
    out = serialize(m)
    out["senderName"] = names.get(m.sender_id, "")
    out["receiverName"] = names.get(m.receiver_id, "")
    return out


def message_send(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    receiver = db.get(Profile, req_str(data, "receiverId"))
    if receiver is None:
        raise ApiError("CONSTRAINT_VIOLATION", "receiver_id references a missing profiles row", field="receiver_id")
    if receiver.id == auth.userId:
        raise ApiError("BAD_REQUEST", "Cannot message yourself", field="receiverId")

    application_id = opt_str(data, "applicationId")
    if application_id:
        app_row = store.get_visible(db, ctx, Application, application_id)
        if app_row.user_id not in (ctx.actor.user_id, receiver.id):
            raise ApiError("BAD_REQUEST", "Application is unrelated to this conversation", field="applicationId")

    attachment = opt_str(data, "attachmentUrl", max_len=2000)
    if attachment:
        bucket, owner, _name = split_path(path_from_url(attachment))
        if bucket != "message-attachments" or owner != auth.userId:
            raise ApiError("FORBIDDEN", "Attachment does not belong to you", field="attachmentUrl")

    msg = Message(
        id=new_uuid(),
        sender_id=auth.userId,
        receiver_id=receiver.id,
        content=req_str(data, "content", max_len=10000),
        attachment_url=attachment,
        created_at=iso_utc_now(),
        read=False,
        application_id=application_id,
    )
    store.insert_row(db, ctx, msg)
    return serialize_message(msg, _names(db, {msg.sender_id, msg.receiver_id}))


def message_list(data, auth: AuthContext | None, db, cfg):
    """Messages the caller sent or received, newest first; `since` supports polling."""
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data, default=100, maximum=500)
    d = data or {}
    me = ctx.actor.user_id

    stmt = select(Message).where(or_(Message.sender_id == me, Message.receiver_id == me))
    other = str(d.get("withUserId") or "").strip()
    if other:
        stmt = stmt.where(
            or_(
                and_(Message.sender_id == me, Message.receiver_id == other),
                and_(Message.sender_id == other, Message.receiver_id == me),
            )
        )
    application_id = str(d.get("applicationId") or "").strip()
    if application_id:
        stmt = stmt.where(Message.application_id == application_id)
    since = opt_datetime(d, "since")
    if since:
        stmt = stmt.where(Message.created_at > since)

    stmt = stmt.order_by(Message.created_at.desc(), Message.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    names = _names(db, {m.sender_id for m in rows} | {m.receiver_id for m in rows})
    unread = sum(1 for m in rows if m.receiver_id == me and not m.read)
    return {"items": [serialize_message(m, names) for m in rows], "unreadCount": unread}


def message_mark_read(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    d = data or {}
    ids = d.get("ids")
    if ids is None:
        ids = [req_str(d, "id")]
    if not isinstance(ids, list):
        raise ApiError("BAD_REQUEST", "ids must be a list", field="ids")

    updated = []
    for mid in ids:
        msg = store.get_visible(db, ctx, Message, mid)
        if msg.read and msg.receiver_id == ctx.actor.user_id:
            continue
        store.update_row(db, ctx, msg, {"read": True})
        updated.append(msg.id)
    return {"updated": updated}
