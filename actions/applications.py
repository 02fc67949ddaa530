from __future__ import annotations

from typing import Any

from sqlalchemy import select

import store
from actions.helpers import paging, policy_ctx, req_str, serialize
from models import Application, JobOffer, Profile
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


def serialize_application(a: Application, *, with_offer: bool = False, applicant: Profile | None = None) -> dict[str, Any]:
    out = serialize(a)
    if with_offer and a.job_offer is not None:
        out["jobOffer"] = {"id": a.job_offer.id, "title": a.job_offer.title, "status": a.job_offer.status}
    if applicant is not None:
        out["applicant"] = {"id": applicant.id, "displayName": applicant.display_name}
    return out


def application_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    # The offer must be visible (open) to the applicant.
    offer = store.get_visible(db, ctx, JobOffer, req_str(data, "jobOfferId"))
    if offer.status != "open":
        raise ApiError("CONFLICT", "Job offer is closed")

    now = iso_utc_now()
    row = Application(
        id=new_uuid(),
        job_offer_id=offer.id,
        user_id=auth.userId,
        applied_at=now,
        status="pending",
        created_at=now,
    )
    store.insert_row(db, ctx, row)
    return serialize_application(row)


def application_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}

    stmt = select(Application)
    offer_id = str(d.get("jobOfferId") or "").strip()
    if offer_id:
        stmt = stmt.where(Application.job_offer_id == offer_id)
    status = str(d.get("status") or "").strip()
    if status:
        stmt = stmt.where(Application.status == status)
    if not ctx.actor.is_hr:
        stmt = stmt.where(Application.user_id == ctx.actor.user_id)

    stmt = stmt.order_by(Application.applied_at.desc(), Application.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)

    applicants: dict[str, Profile] = {}
    if ctx.actor.is_hr and rows:
        ids = {a.user_id for a in rows}
        applicants = {p.id: p for p in db.execute(select(Profile).where(Profile.id.in_(ids))).scalars()}
    return {
        "items": [serialize_application(a, with_offer=True, applicant=applicants.get(a.user_id)) for a in rows],
        "limit": limit,
        "offset": offset,
    }


def application_status_set(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    app_row = store.get_visible(db, ctx, Application, req_str(data, "id"))
    status = req_str(data, "status").lower()
    store.update_row(db, ctx, app_row, {"status": status})
    return serialize_application(app_row)
