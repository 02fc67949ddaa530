from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select

import store
from actions.helpers import (
    opt_datetime,
    opt_str,
    paging,
    pick_changes,
    policy_ctx,
    req_str,
    serialize,
    str_list,
)
from models import Profile, WorkExperience
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


_PROFILE_FIELDS = {
    "firstName": ("first_name", lambda d, k: str(d.get(k) or "").strip()[:200]),
    "lastName": ("last_name", lambda d, k: str(d.get(k) or "").strip()[:200]),
    "phone": ("phone", lambda d, k: opt_str(d, k, max_len=50)),
    "linkedin": ("linkedin", lambda d, k: opt_str(d, k, max_len=500)),
    "cvUrl": ("cv_url", lambda d, k: opt_str(d, k, max_len=1000)),
    "birthDate": ("birth_date", opt_datetime),
    "profileImageUrl": ("profile_image_url", lambda d, k: opt_str(d, k, max_len=1000)),
    "driversLicense": ("drivers_license", lambda d, k: opt_str(d, k, max_len=50)),
    "emergencyTitles": ("emergency_titles", lambda d, k: str_list(d, k) or []),
    "otherTitles": ("other_titles", lambda d, k: str_list(d, k) or []),
    "experienceDescription": ("experience_description", opt_str),
    # Accepted so that the row policy can reject it with FORBIDDEN.
    "role": ("role", lambda d, k: str(d.get(k) or "").strip().lower()),
}


def serialize_profile(p: Profile, *, with_experience: bool = False) -> dict[str, Any]:
    out = serialize(p)
    out["displayName"] = p.display_name
    if with_experience:
        out["workExperiences"] = [serialize(w) for w in p.work_experiences]
    return out


def profile_get(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    user_id = str((data or {}).get("userId") or auth.userId).strip()
    prof = store.get_visible(db, ctx, Profile, user_id)
    return serialize_profile(prof, with_experience=True)


def profile_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    prof = store.get_visible(db, ctx, Profile, auth.userId)
    changes = pick_changes(data, _PROFILE_FIELDS)
    store.update_row(db, ctx, prof, changes)
    return serialize_profile(prof)


def profile_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    stmt = select(Profile)

    role = str((data or {}).get("role") or "").strip().lower()
    if role:
        stmt = stmt.where(Profile.role == role)
    q = str((data or {}).get("q") or "").strip().lower()
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(func.lower(Profile.first_name).like(like), func.lower(Profile.last_name).like(like)))

    stmt = stmt.order_by(Profile.last_name, Profile.first_name, Profile.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    return {"items": [serialize_profile(p) for p in rows], "limit": limit, "offset": offset}


def work_experience_add(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    start = opt_datetime(data, "startDate")
    if not start:
        raise ApiError("BAD_REQUEST", "Missing startDate", field="startDate")
    end = opt_datetime(data, "endDate")
    if end and end < start:
        raise ApiError("CONSTRAINT_VIOLATION", "endDate is before startDate", field="end_date")

    row = WorkExperience(
        id=new_uuid(),
        profile_id=auth.userId,
        position=req_str(data, "position", max_len=200),
        company=req_str(data, "company", max_len=200),
        start_date=start,
        end_date=end,
        description=opt_str(data, "description"),
        created_at=iso_utc_now(),
    )
    store.insert_row(db, ctx, row)
    return serialize(row)


def work_experience_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    user_id = str((data or {}).get("userId") or auth.userId).strip()
    stmt = (
        select(WorkExperience)
        .where(WorkExperience.profile_id == user_id)
        .order_by(WorkExperience.start_date.desc(), WorkExperience.id)
    )
    return {"items": [serialize(w) for w in store.list_visible(db, ctx, stmt)]}


def work_experience_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    row = store.get_visible(db, ctx, WorkExperience, (data or {}).get("id"))
    store.delete_row(db, ctx, row)
    return {"deleted": True, "id": row.id}
