from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import func, select

import store
from actions.helpers import (
    opt_bool,
    opt_datetime,
    opt_int,
    opt_str,
    paging,
    pick_changes,
    policy_ctx,
    req_str,
    serialize,
    str_list,
)
from models import (
    CandidateEvaluation,
    EvaluationTemplate,
    Interview,
    ProcessStage,
    SelectionProcess,
    SkillAssessment,
)
from policies import is_allowed
from utils import ApiError, AuthContext, iso_utc_now, new_uuid


_TERMINAL_PROCESS_STATUSES = ("completed", "rejected")


def _lower(d: dict, k: str) -> str:
    return str(d.get(k) or "").strip().lower()


def _assessment_ids(db, data: dict, key: str) -> Optional[list[str]]:
    ids = str_list(data, key)
    if not ids:
        return ids
    found = set(db.execute(select(SkillAssessment.id).where(SkillAssessment.id.in_(ids))).scalars())
    missing = [i for i in ids if i not in found]
    if missing:
        raise ApiError("CONSTRAINT_VIOLATION", f"Unknown assessment: {missing[0]}", field="required_assessments")
    return ids


def weighted_score(template: EvaluationTemplate, criteria_scores: dict[str, Any]) -> int:
    """
    Weight-normalised percentage over the template's criteria:
    sum(w_i * s_i / max_i) / sum(w_i) * 100. Every criterion must be scored
    within its own [min_score, max_score].
    """
    criteria = list(template.criteria or [])
    if not criteria:
        raise ApiError("BAD_REQUEST", "Template has no criteria", field="criteriaScores")

    total_weight = 0
    acc = 0.0
    for c in criteria:
        raw = criteria_scores.get(c.id)
        if raw is None or isinstance(raw, bool):
            raise ApiError("BAD_REQUEST", f"Missing score for criterion {c.name}", field="criteriaScores")
        try:
            s = float(raw)
        except (TypeError, ValueError):
            raise ApiError("BAD_REQUEST", f"Invalid score for criterion {c.name}", field="criteriaScores")
        if s < c.min_score or s > c.max_score:
            raise ApiError(
                "CONSTRAINT_VIOLATION",
                f"Score for {c.name} must be between {c.min_score} and {c.max_score}",
                field="criteria_scores",
            )
        weight = int(c.weight or 0)
        total_weight += weight
        acc += weight * (s / c.max_score)

    if total_weight <= 0:
        raise ApiError("BAD_REQUEST", "Template criteria have no weight", field="criteriaScores")
    return max(0, min(100, int(round(acc / total_weight * 100))))


# ---- serialization -----------------------------------------------------------


def serialize_process(p: SelectionProcess, *, ctx=None, detail: bool = False) -> dict[str, Any]:
    out = serialize(p)
    out["jobOfferTitle"] = p.job_offer.title if p.job_offer is not None else ""
    if not detail:
        return out

    stages = []
    for st in p.stages:
        item = serialize(st)
        evals = [e for e in st.evaluations if ctx is None or is_allowed(ctx, "select", e)]
        item["evaluations"] = [serialize(e) for e in evals]
        stages.append(item)
    out["stages"] = stages
    out["interviews"] = [serialize(i) for i in sorted(p.interviews, key=lambda i: i.scheduled_date or "")]
    out["results"] = [serialize(r, exclude=("answers",)) for r in p.results]
    return out


# ---- processes ---------------------------------------------------------------


def process_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    now = iso_utc_now()
    proc = SelectionProcess(
        id=new_uuid(),
        job_offer_id=req_str(data, "jobOfferId"),
        candidate_id=req_str(data, "candidateId"),
        status=_lower(data, "status") or "pending",
        start_date=opt_datetime(data, "startDate") or now,
        notes=opt_str(data, "notes"),
        required_assessments=_assessment_ids(db, data, "requiredAssessments") or [],
        completed_assessments=[],
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, proc)

    for idx, name in enumerate(str_list(data, "stages") or []):
        store.insert_row(
            db,
            ctx,
            ProcessStage(
                id=new_uuid(),
                process_id=proc.id,
                name=name[:200],
                order_index=idx,
                is_required=True,
                created_at=now,
                updated_at=now,
            ),
        )
    db.refresh(proc)
    return serialize_process(proc, ctx=ctx, detail=True)


def process_get(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    proc = store.get_visible(db, ctx, SelectionProcess, (data or {}).get("id"))
    return serialize_process(proc, ctx=ctx, detail=True)


def process_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}

    stmt = select(SelectionProcess)
    for key, col in (
        ("jobOfferId", SelectionProcess.job_offer_id),
        ("candidateId", SelectionProcess.candidate_id),
        ("status", SelectionProcess.status),
    ):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    if not ctx.actor.is_hr:
        stmt = stmt.where(SelectionProcess.candidate_id == ctx.actor.user_id)

    stmt = stmt.order_by(SelectionProcess.created_at.desc(), SelectionProcess.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    return {"items": [serialize_process(p) for p in rows], "limit": limit, "offset": offset}


def process_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    proc = store.get_visible(db, ctx, SelectionProcess, (data or {}).get("id"))

    changes = pick_changes(
        data,
        {
            "status": ("status", _lower),
            "notes": ("notes", opt_str),
            "endDate": ("end_date", opt_datetime),
        },
    )
    if "requiredAssessments" in (data or {}):
        changes["required_assessments"] = _assessment_ids(db, data, "requiredAssessments") or []
    if changes.get("status") in _TERMINAL_PROCESS_STATUSES and not proc.end_date and "end_date" not in changes:
        changes["end_date"] = iso_utc_now()

    store.update_row(db, ctx, proc, changes)
    return serialize_process(proc, ctx=ctx, detail=True)


# ---- stages ------------------------------------------------------------------


def stage_add(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    proc = store.get_visible(db, ctx, SelectionProcess, req_str(data, "processId"))
    order_index = opt_int(data, "orderIndex")
    if order_index is None:
        current = db.execute(
            select(func.max(ProcessStage.order_index)).where(ProcessStage.process_id == proc.id)
        ).scalar_one_or_none()
        order_index = 0 if current is None else int(current) + 1

    now = iso_utc_now()
    stage = ProcessStage(
        id=new_uuid(),
        process_id=proc.id,
        name=req_str(data, "name", max_len=200),
        description=opt_str(data, "description"),
        order_index=order_index,
        requirements=opt_str(data, "requirements"),
        is_required=opt_bool(data, "isRequired") if "isRequired" in (data or {}) else True,
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, stage)
    return serialize(stage)


def stage_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    stage = store.get_visible(db, ctx, ProcessStage, (data or {}).get("id"))
    changes = pick_changes(
        data,
        {
            "name": ("name", lambda d, k: req_str(d, k, max_len=200)),
            "description": ("description", opt_str),
            "orderIndex": ("order_index", opt_int),
            "requirements": ("requirements", opt_str),
            "isRequired": ("is_required", opt_bool),
        },
    )
    store.update_row(db, ctx, stage, changes)
    return serialize(stage)


def stage_delete(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    stage = store.get_visible(db, ctx, ProcessStage, (data or {}).get("id"))
    store.delete_row(db, ctx, stage)
    return {"deleted": True, "id": stage.id}


# ---- evaluations -------------------------------------------------------------


def evaluation_save(data, auth: AuthContext | None, db, cfg):
    """Create or update the evaluation of a stage; template scoring overrides `score`."""
    ctx = policy_ctx(auth, db)
    d = data or {}
    changes: dict[str, Any] = pick_changes(
        d,
        {
            "score": ("score", opt_int),
            "feedback": ("feedback", opt_str),
            "status": ("status", _lower),
            "templateId": ("template_id", opt_str),
        },
    )

    criteria_scores = d.get("criteriaScores")
    if criteria_scores is not None:
        if not isinstance(criteria_scores, dict):
            raise ApiError("BAD_REQUEST", "criteriaScores must be an object", field="criteriaScores")
        template_id = changes.get("template_id") or str(d.get("templateId") or "").strip()
        if not template_id and d.get("id"):
            existing = db.get(CandidateEvaluation, str(d.get("id")))
            template_id = existing.template_id if existing is not None else ""
        if not template_id:
            raise ApiError("BAD_REQUEST", "criteriaScores requires templateId", field="templateId")
        template = store.get_visible(db, ctx, EvaluationTemplate, template_id)
        changes["criteria_scores"] = {str(k): v for k, v in criteria_scores.items()}
        changes["score"] = weighted_score(template, changes["criteria_scores"])

    eval_id = str(d.get("id") or "").strip()
    if eval_id:
        ev = store.get_visible(db, ctx, CandidateEvaluation, eval_id)
        store.update_row(db, ctx, ev, changes)
        return serialize(ev)

    stage = store.get_visible(db, ctx, ProcessStage, req_str(d, "stageId"))
    now = iso_utc_now()
    ev = CandidateEvaluation(
        id=new_uuid(),
        stage_id=stage.id,
        evaluator_id=auth.userId,
        status=changes.pop("status", None) or "pending",
        created_at=now,
        updated_at=now,
        **changes,
    )
    store.insert_row(db, ctx, ev)
    return serialize(ev)


# ---- interviews --------------------------------------------------------------


def interview_schedule(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    proc = store.get_visible(db, ctx, SelectionProcess, req_str(data, "processId"))
    scheduled = opt_datetime(data, "scheduledDate")
    if not scheduled:
        raise ApiError("BAD_REQUEST", "Missing scheduledDate", field="scheduledDate")
    duration = opt_int(data, "durationMinutes")
    if duration is None:
        raise ApiError("BAD_REQUEST", "Missing durationMinutes", field="durationMinutes")

    now = iso_utc_now()
    iv = Interview(
        id=new_uuid(),
        process_id=proc.id,
        interviewer_id=str((data or {}).get("interviewerId") or auth.userId).strip(),
        scheduled_date=scheduled,
        duration_minutes=duration,
        location=opt_str(data, "location", max_len=500),
        meeting_link=opt_str(data, "meetingLink", max_len=1000),
        status="scheduled",
        notes=opt_str(data, "notes"),
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, iv)
    return serialize(iv)


def interview_update(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    iv = store.get_visible(db, ctx, Interview, (data or {}).get("id"))
    changes = pick_changes(
        data,
        {
            "scheduledDate": ("scheduled_date", opt_datetime),
            "durationMinutes": ("duration_minutes", opt_int),
            "location": ("location", opt_str),
            "meetingLink": ("meeting_link", opt_str),
            "status": ("status", _lower),
            "notes": ("notes", opt_str),
        },
    )
    store.update_row(db, ctx, iv, changes)
    return serialize(iv)
