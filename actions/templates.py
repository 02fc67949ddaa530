from __future__ import annotations

from typing import Any

from sqlalchemy import func, select

import store
from actions.helpers import opt_int, opt_str, pick_changes, policy_ctx, req_str, serialize
from models import EvaluationCriterion, EvaluationTemplate
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


def serialize_template(t: EvaluationTemplate) -> dict[str, Any]:
    out = serialize(t)
    out["criteria"] = [serialize(c) for c in t.criteria]
    return out


def _check_scores(max_score: Any, passing_score: Any) -> None:
    if max_score is not None and passing_score is not None and passing_score > max_score:
        raise ApiError("CONSTRAINT_VIOLATION", "passingScore must not exceed maxScore", field="passing_score")


def template_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    stmt = select(EvaluationTemplate)
    position = str((data or {}).get("positionType") or "").strip()
    if position:
        stmt = stmt.where(EvaluationTemplate.position_type == position)
    stmt = stmt.order_by(EvaluationTemplate.created_at.desc(), EvaluationTemplate.id)
    return {"items": [serialize_template(t) for t in store.list_visible(db, ctx, stmt)]}


def template_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    now = iso_utc_now()
    max_score = opt_int(data, "maxScore")
    passing_score = opt_int(data, "passingScore")
    t = EvaluationTemplate(
        id=new_uuid(),
        name=req_str(data, "name", max_len=200),
        description=opt_str(data, "description"),
        position_type=req_str(data, "positionType", max_len=200),
        max_score=100 if max_score is None else max_score,
        passing_score=70 if passing_score is None else passing_score,
        created_by=auth.userId,
        created_at=now,
        updated_at=now,
    )
    _check_scores(t.max_score, t.passing_score)
    store.insert_row(db, ctx, t)

    for idx, c in enumerate((data or {}).get("criteria") or []):
        if not isinstance(c, dict):
            raise ApiError("BAD_REQUEST", "criteria items must be objects", field="criteria")
        _add_criterion(db, ctx, t.id, c, default_order=idx)
    db.refresh(t)
    return serialize_template(t)


def template_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    t = store.get_visible(db, ctx, EvaluationTemplate, (data or {}).get("id"))
    changes = pick_changes(
        data,
        {
            "name": ("name", lambda d, k: req_str(d, k, max_len=200)),
            "description": ("description", opt_str),
            "positionType": ("position_type", lambda d, k: req_str(d, k, max_len=200)),
            "maxScore": ("max_score", opt_int),
            "passingScore": ("passing_score", opt_int),
        },
    )
    _check_scores(changes.get("max_score", t.max_score), changes.get("passing_score", t.passing_score))
    store.update_row(db, ctx, t, changes)
    return serialize_template(t)


def template_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    t = store.get_visible(db, ctx, EvaluationTemplate, (data or {}).get("id"))
    store.delete_row(db, ctx, t)
    return {"deleted": True, "id": t.id}


def template_duplicate(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    src = store.get_visible(db, ctx, EvaluationTemplate, (data or {}).get("id"))
    now = iso_utc_now()
    copy = EvaluationTemplate(
        id=new_uuid(),
        name=f"{src.name} (copy)",
        description=src.description,
        position_type=src.position_type,
        max_score=src.max_score,
        passing_score=src.passing_score,
        created_by=auth.userId,
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, copy)
    for c in src.criteria:
        store.insert_row(
            db,
            ctx,
            EvaluationCriterion(
                id=new_uuid(),
                template_id=copy.id,
                name=c.name,
                description=c.description,
                weight=c.weight,
                min_score=c.min_score,
                max_score=c.max_score,
                order_index=c.order_index,
                created_at=now,
            ),
        )
    db.refresh(copy)
    return serialize_template(copy)


def _add_criterion(db, ctx, template_id: str, c: dict, *, default_order: int | None = None) -> EvaluationCriterion:
    order_index = opt_int(c, "orderIndex")
    if order_index is None:
        order_index = default_order
    if order_index is None:
        current = db.execute(
            select(func.max(EvaluationCriterion.order_index)).where(EvaluationCriterion.template_id == template_id)
        ).scalar_one_or_none()
        order_index = 0 if current is None else int(current) + 1

    weight = opt_int(c, "weight")
    min_score = opt_int(c, "minScore")
    max_score = opt_int(c, "maxScore")
    row = EvaluationCriterion(
        id=new_uuid(),
        template_id=template_id,
        name=req_str(c, "name", max_len=200),
        description=opt_str(c, "description"),
        weight=1 if weight is None else weight,
        min_score=0 if min_score is None else min_score,
        max_score=10 if max_score is None else max_score,
        order_index=order_index,
        created_at=iso_utc_now(),
    )
    if row.min_score > row.max_score:
        raise ApiError("CONSTRAINT_VIOLATION", "minScore must not exceed maxScore", field="min_score")
    store.insert_row(db, ctx, row)
    return row


def criterion_add(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    t = store.get_visible(db, ctx, EvaluationTemplate, req_str(data, "templateId"))
    return serialize(_add_criterion(db, ctx, t.id, data or {}))


def criterion_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    c = store.get_visible(db, ctx, EvaluationCriterion, (data or {}).get("id"))
    store.delete_row(db, ctx, c)
    return {"deleted": True, "id": c.id}
