from __future__ import annotations

from sqlalchemy import and_, func, or_, select

import store
from actions.helpers import opt_bool, opt_datetime, paging, policy_ctx, req_str, serialize
from models import EmailNotification, Notification
from utils import AuthContext


def notification_list(data, auth: AuthContext | None, db, cfg):
    """Own notifications.

    Without `since` the newest come first. With `since` (plus `sinceId` from a
    previous `cursor`) the rows after that (createdAt, id) position come oldest
    first, so repeated polls walk forward without skipping rows that share a
    timestamp.
    """
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data, default=50, maximum=200)
    me = ctx.actor.user_id

    stmt = select(Notification).where(Notification.user_id == me)
    since = opt_datetime(data, "since")
    since_id = str((data or {}).get("sinceId") or "").strip()
    if since and since_id:
        stmt = stmt.where(
            or_(
                Notification.created_at > since,
                and_(Notification.created_at == since, Notification.id > since_id),
            )
        )
    elif since:
        stmt = stmt.where(Notification.created_at > since)
    if opt_bool(data, "unreadOnly"):
        stmt = stmt.where(Notification.read.is_(False))
    type_ = str((data or {}).get("type") or "").strip()
    if type_:
        stmt = stmt.where(Notification.type == type_)
    if since:
        stmt = stmt.order_by(Notification.created_at, Notification.id)
    else:
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
    stmt = stmt.limit(limit).offset(offset)

    rows = store.list_visible(db, ctx, stmt)
    unread = db.execute(
        select(func.count(Notification.id)).where(Notification.user_id == me, Notification.read.is_(False))
    ).scalar_one()
    last = max(rows, key=lambda n: (n.created_at, n.id), default=None)
    return {
        "items": [serialize(n) for n in rows],
        "unreadCount": int(unread or 0),
        "cursor": last.created_at if last else (since or ""),
        "cursorId": last.id if last else since_id,
    }


def notification_mark_read(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    n = store.get_visible(db, ctx, Notification, req_str(data, "id"))
    if not n.read:
        store.update_row(db, ctx, n, {"read": True})
    return serialize(n)


def notification_mark_all_read(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    rows = db.execute(
        select(Notification).where(Notification.user_id == ctx.actor.user_id, Notification.read.is_(False))
    ).scalars().all()
    for n in rows:
        store.update_row(db, ctx, n, {"read": True})
    return {"updated": len(rows)}


def email_outbox_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}
    stmt = select(EmailNotification)
    if not ctx.actor.is_hr:
        stmt = stmt.where(EmailNotification.recipient_id == ctx.actor.user_id)
    for key, col in (
        ("status", EmailNotification.status),
        ("type", EmailNotification.type),
        ("recipientId", EmailNotification.recipient_id),
    ):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    stmt = stmt.order_by(EmailNotification.created_at.desc(), EmailNotification.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    return {"items": [serialize(e) for e in rows], "limit": limit, "offset": offset}
