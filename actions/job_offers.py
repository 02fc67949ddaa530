from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select

import store
from actions.helpers import opt_datetime, opt_str, paging, pick_changes, policy_ctx, req_str, serialize
from models import Application, JobOffer
from utils import AuthContext, iso_utc_now, new_uuid


_OFFER_FIELDS = {
    "title": ("title", lambda d, k: req_str(d, k, max_len=300)),
    "description": ("description", lambda d, k: req_str(d, k, max_len=20000)),
    "location": ("location", lambda d, k: opt_str(d, k, max_len=300)),
    "closingDate": ("closing_date", opt_datetime),
    "requirements": ("requirements", lambda d, k: req_str(d, k, max_len=20000)),
    "additionalInstructions": ("additional_instructions", opt_str),
    "status": ("status", lambda d, k: str(d.get(k) or "").strip().lower()),
    "workType": ("work_type", lambda d, k: opt_str(d, k, max_len=50)),
    "category": ("category", lambda d, k: opt_str(d, k, max_len=50)),
}


def serialize_offer(o: JobOffer, *, application_count: int | None = None) -> dict[str, Any]:
    out = serialize(o)
    if application_count is not None:
        out["applicationCount"] = application_count
    return out


def job_offer_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}

    stmt = select(JobOffer)
    if not ctx.actor.is_hr:
        # Narrow before paging so a page is never emptied by the row policy.
        stmt = stmt.where(or_(JobOffer.status == "open", JobOffer.created_by == ctx.actor.user_id))
    for key, col in (("category", JobOffer.category), ("workType", JobOffer.work_type), ("status", JobOffer.status)):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    location = str(d.get("location") or "").strip().lower()
    if location:
        stmt = stmt.where(func.lower(JobOffer.location).like(f"%{location}%"))
    q = str(d.get("q") or "").strip().lower()
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(func.lower(JobOffer.title).like(like), func.lower(JobOffer.description).like(like)))

    stmt = stmt.order_by(JobOffer.published_at.desc(), JobOffer.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)

    counts: dict[str, int] = {}
    if ctx.actor.is_hr and rows:
        counts = dict(
            db.execute(
                select(Application.job_offer_id, func.count(Application.id))
                .where(Application.job_offer_id.in_([o.id for o in rows]))
                .group_by(Application.job_offer_id)
            ).all()
        )
    return {
        "items": [serialize_offer(o, application_count=counts.get(o.id, 0) if ctx.actor.is_hr else None) for o in rows],
        "limit": limit,
        "offset": offset,
    }


def job_offer_get(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    offer = store.get_visible(db, ctx, JobOffer, (data or {}).get("id"))
    return serialize_offer(offer)


def job_offer_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    now = iso_utc_now()
    fields = pick_changes(data, _OFFER_FIELDS)
    for key in ("title", "description", "requirements"):
        fields.setdefault(key, req_str(data, key))
    fields.setdefault("status", "open")

    offer = JobOffer(id=new_uuid(), published_at=now, created_by=auth.userId, created_at=now, updated_at=now, **fields)
    store.insert_row(db, ctx, offer)
    return serialize_offer(offer)


def job_offer_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    offer = store.get_visible(db, ctx, JobOffer, (data or {}).get("id"))
    store.update_row(db, ctx, offer, pick_changes(data, _OFFER_FIELDS))
    return serialize_offer(offer)


def job_offer_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    offer = store.get_visible(db, ctx, JobOffer, (data or {}).get("id"))
    store.delete_row(db, ctx, offer)
    return {"deleted": True, "id": offer.id}
