from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select

import store
from actions.helpers import append_audit, opt_bool, opt_int, opt_str, paging, policy_ctx, req_str, serialize
from models import QUESTION_TYPES, AssessmentQuestion, AssessmentResult, SelectionProcess, SkillAssessment
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, parse_datetime_maybe, to_iso_utc


log = logging.getLogger("assessments")

AUTO_GRADED = ("multiple_choice", "true_false")


def _assigned_ids(db, candidate_id: str) -> set[str]:
    out: set[str] = set()
    for ids in db.execute(
        select(SelectionProcess.required_assessments).where(SelectionProcess.candidate_id == candidate_id)
    ).scalars():
        out.update(ids or [])
    return out


def deadline_for(result: AssessmentResult, assessment: SkillAssessment) -> Optional[datetime]:
    if not assessment.time_limit_minutes:
        return None
    start = parse_datetime_maybe(result.start_time)
    if start is None:
        return None
    return start + timedelta(minutes=int(assessment.time_limit_minutes))


def serialize_question(q: AssessmentQuestion, *, reveal: bool) -> dict[str, Any]:
    return serialize(q, exclude=() if reveal else ("correct_answer",))


def serialize_assessment(a: SkillAssessment, *, with_questions: bool = False, reveal: bool = False) -> dict[str, Any]:
    out = serialize(a)
    if with_questions:
        out["questions"] = [serialize_question(q, reveal=reveal) for q in a.questions]
    else:
        out["questionCount"] = len(a.questions)
    return out


def serialize_result(r: AssessmentResult, *, reveal_answers: bool = True) -> dict[str, Any]:
    out = serialize(r, exclude=() if reveal_answers else ("answers",))
    a = r.assessment
    if a is not None:
        out["assessmentName"] = a.name
        dl = deadline_for(r, a)
        out["deadline"] = to_iso_utc(dl) if dl else None
        out["passed"] = None if r.score is None else r.score >= a.passing_score
    return out


def _validate_question(q: dict, idx: int) -> dict[str, Any]:
    if not isinstance(q, dict):
        raise ApiError("BAD_REQUEST", "questions items must be objects", field="questions")
    qtype = str(q.get("questionType") or "").strip().lower()
    if qtype not in QUESTION_TYPES:
        raise ApiError(
            "CONSTRAINT_VIOLATION", f"question_type must be one of: {', '.join(QUESTION_TYPES)}", field="question_type"
        )
    options = q.get("options")
    correct = opt_str(q, "correctAnswer")
    if qtype == "multiple_choice":
        if not isinstance(options, list) or len(options) < 2:
            raise ApiError("BAD_REQUEST", "multiple_choice questions need at least two options", field="options")
        options = [str(o).strip() for o in options]
        if correct is None or correct not in options:
            raise ApiError("BAD_REQUEST", "correctAnswer must be one of the options", field="correctAnswer")
    elif qtype == "true_false":
        options = ["true", "false"]
        correct = (correct or "").lower()
        if correct not in options:
            raise ApiError("BAD_REQUEST", "correctAnswer must be true or false", field="correctAnswer")
    else:
        options = None
    points = opt_int(q, "points")
    order_index = opt_int(q, "orderIndex")
    return {
        "question": req_str(q, "question"),
        "question_type": qtype,
        "options": options,
        "correct_answer": correct,
        "points": 1 if points is None else points,
        "order_index": idx if order_index is None else order_index,
    }


def _replace_questions(db, ctx, assessment: SkillAssessment, questions: list) -> None:
    parsed = [_validate_question(q, i) for i, q in enumerate(questions or [])]
    for old in list(assessment.questions):
        store.delete_row(db, ctx, old)
    now = iso_utc_now()
    for fields in parsed:
        store.insert_row(db, ctx, AssessmentQuestion(id=new_uuid(), assessment_id=assessment.id, created_at=now, **fields))
    db.refresh(assessment)


def grade(questions: list[AssessmentQuestion], answers: dict[str, Any]) -> Optional[int]:
    """Percentage of auto-graded points answered correctly; None when nothing is auto-graded."""
    total = 0
    earned = 0
    for q in questions:
        if q.question_type not in AUTO_GRADED:
            continue
        total += int(q.points or 0)
        given = str(answers.get(q.id) if answers.get(q.id) is not None else "").strip().lower()
        if given and given == str(q.correct_answer or "").strip().lower():
            earned += int(q.points or 0)
    if total <= 0:
        return None
    return int(round(earned / total * 100))


# ---- actions -----------------------------------------------------------------


def assessment_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    stmt = select(SkillAssessment)
    if not ctx.actor.is_hr:
        stmt = stmt.where(SkillAssessment.id.in_(_assigned_ids(db, ctx.actor.user_id)))
    active = opt_bool(data, "isActive")
    if active is not None:
        stmt = stmt.where(SkillAssessment.is_active == active)
    skill = str((data or {}).get("skillType") or "").strip()
    if skill:
        stmt = stmt.where(SkillAssessment.skill_type == skill)
    stmt = stmt.order_by(SkillAssessment.created_at.desc(), SkillAssessment.id)
    return {"items": [serialize_assessment(a) for a in store.list_visible(db, ctx, stmt)]}


def assessment_get(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    a = store.get_visible(db, ctx, SkillAssessment, (data or {}).get("id"))
    return serialize_assessment(a, with_questions=True, reveal=ctx.actor.is_hr)


def assessment_create(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    now = iso_utc_now()
    passing = opt_int(data, "passingScore")
    a = SkillAssessment(
        id=new_uuid(),
        name=req_str(data, "name", max_len=200),
        description=opt_str(data, "description"),
        skill_type=req_str(data, "skillType", max_len=100),
        time_limit_minutes=opt_int(data, "timeLimitMinutes"),
        passing_score=70 if passing is None else passing,
        is_active=True if opt_bool(data, "isActive") is None else opt_bool(data, "isActive"),
        created_by=auth.userId,
        created_at=now,
        updated_at=now,
    )
    store.insert_row(db, ctx, a)
    if (data or {}).get("questions"):
        _replace_questions(db, ctx, a, data["questions"])
    return serialize_assessment(a, with_questions=True, reveal=True)


def assessment_questions_save(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    a = store.get_visible(db, ctx, SkillAssessment, req_str(data, "assessmentId"))
    questions = (data or {}).get("questions")
    if not isinstance(questions, list):
        raise ApiError("BAD_REQUEST", "questions must be a list", field="questions")
    _replace_questions(db, ctx, a, questions)
    return serialize_assessment(a, with_questions=True, reveal=True)


def assessment_start(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    a = store.get_visible(db, ctx, SkillAssessment, req_str(data, "assessmentId"))
    if not a.is_active:
        raise ApiError("CONFLICT", "Assessment is not active")

    process_id = str((data or {}).get("processId") or "").strip()
    if process_id:
        proc = store.get_visible(db, ctx, SelectionProcess, process_id)
        if a.id not in (proc.required_assessments or []):
            raise ApiError("FORBIDDEN", "Assessment is not required by this process")
    else:
        proc = db.execute(
            select(SelectionProcess)
            .where(SelectionProcess.candidate_id == auth.userId)
            .order_by(SelectionProcess.created_at.desc())
        ).scalars().all()
        proc = next((p for p in proc if a.id in (p.required_assessments or [])), None)

    existing = db.execute(
        select(AssessmentResult).where(
            AssessmentResult.assessment_id == a.id,
            AssessmentResult.candidate_id == auth.userId,
            AssessmentResult.status == "in_progress",
        )
    ).scalars().first()
    if existing is not None:
        result = existing
    else:
        now = iso_utc_now()
        result = AssessmentResult(
            id=new_uuid(),
            assessment_id=a.id,
            candidate_id=auth.userId,
            process_id=proc.id if proc is not None else None,
            start_time=now,
            status="in_progress",
            created_at=now,
        )
        store.insert_row(db, ctx, result)
        db.refresh(result)

    return {
        "result": serialize_result(result, reveal_answers=False),
        "assessment": serialize_assessment(a, with_questions=True, reveal=False),
    }


def _mark_completed_on_process(db, result: AssessmentResult) -> None:
    if not result.process_id:
        return
    proc = db.get(SelectionProcess, result.process_id)
    if proc is None:
        return
    done = list(proc.completed_assessments or [])
    if result.assessment_id in done:
        return
    # Trusted write: candidates cannot update their selection process.
    store.update_row(db, None, proc, {"completed_assessments": done + [result.assessment_id]})


def assessment_submit(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    result = store.get_visible(db, ctx, AssessmentResult, req_str(data, "resultId"))
    if result.candidate_id != auth.userId:
        raise ApiError("FORBIDDEN", "Not your attempt")
    if result.status != "in_progress":
        raise ApiError("CONFLICT", f"Attempt is already {result.status}")

    answers = (data or {}).get("answers") or {}
    if not isinstance(answers, dict):
        raise ApiError("BAD_REQUEST", "answers must be an object", field="answers")
    answers = {str(k): v for k, v in answers.items()}

    a = result.assessment
    now = datetime.now(timezone.utc)
    dl = deadline_for(result, a)
    changes: dict[str, Any] = {"answers": answers, "end_time": to_iso_utc(now)}
    if dl is not None and now > dl:
        changes.update(status="expired", score=None)
    else:
        changes.update(status="completed", score=grade(list(a.questions), answers))

    store.update_row(db, ctx, result, changes)
    if result.status == "completed":
        _mark_completed_on_process(db, result)

    append_audit(
        db,
        entityType="ASSESSMENT_RESULT",
        entityId=result.id,
        action="ASSESSMENT_SUBMIT",
        stageTag=result.status.upper(),
        actor=auth,
        meta={"assessmentId": result.assessment_id, "score": result.score},
    )
    return serialize_result(result)


def assessment_results_list(data, auth: AuthContext | None, db, cfg):
    ctx = policy_ctx(auth, db)
    limit, offset = paging(data)
    d = data or {}
    stmt = select(AssessmentResult)
    for key, col in (
        ("assessmentId", AssessmentResult.assessment_id),
        ("candidateId", AssessmentResult.candidate_id),
        ("processId", AssessmentResult.process_id),
        ("status", AssessmentResult.status),
    ):
        val = str(d.get(key) or "").strip()
        if val:
            stmt = stmt.where(col == val)
    if not ctx.actor.is_hr:
        stmt = stmt.where(AssessmentResult.candidate_id == ctx.actor.user_id)
    stmt = stmt.order_by(AssessmentResult.start_time.desc(), AssessmentResult.id).limit(limit).offset(offset)
    rows = store.list_visible(db, ctx, stmt)
    return {"items": [serialize_result(r) for r in rows], "limit": limit, "offset": offset}


def expire_overdue_results(db, *, now: Optional[datetime] = None) -> int:
    """Mark in-progress attempts past their time limit as expired."""
    now = now or datetime.now(timezone.utc)
    rows = db.execute(
        select(AssessmentResult)
        .join(SkillAssessment, SkillAssessment.id == AssessmentResult.assessment_id)
        .where(AssessmentResult.status == "in_progress", SkillAssessment.time_limit_minutes.is_not(None))
    ).scalars().all()
    expired = 0
    for r in rows:
        dl = deadline_for(r, r.assessment)
        if dl is not None and now > dl:
            store.update_row(db, None, r, {"status": "expired", "end_time": to_iso_utc(now)})
            expired += 1
    if expired:
        log.info("expired %s overdue assessment attempts", expired)
    return expired


def assessment_expire_sweep(data, auth: AuthContext | None, db, cfg):
    count = expire_overdue_results(db)
    append_audit(db, entityType="ASSESSMENT_RESULT", entityId="*", action="ASSESSMENT_EXPIRE_SWEEP", actor=auth, meta={"expired": count})
    return {"expired": count}
