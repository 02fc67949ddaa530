from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from _support import _create_offer, _error_code, _hr_and_candidate, _ok
from actions.assessments import expire_overdue_results
from db import SessionLocal
from models import AssessmentResult, SelectionProcess
from utils import to_iso_utc


QUESTIONS = [
    {"question": "First responder priority?", "questionType": "multiple_choice", "options": ["Airway", "Legs"], "correctAnswer": "Airway", "points": 3},
    {"question": "CPR is 30:2", "questionType": "true_false", "correctAnswer": "true", "points": 1},
    {"question": "Describe a triage call", "questionType": "open_ended"},
]


def _setup(client, *, time_limit=None):
    hr, cand = _hr_and_candidate(client)
    data = {"name": "Triage basics", "skillType": "medical", "questions": QUESTIONS}
    if time_limit is not None:
        data["timeLimitMinutes"] = time_limit
    assessment = _ok(client, hr["token"], "ASSESSMENT_CREATE", data)
    offer = _create_offer(client, hr["token"])
    proc = _ok(client, hr["token"], "PROCESS_CREATE", {"jobOfferId": offer["id"], "candidateId": cand["id"]})
    return hr, cand, assessment, proc


def _assign(client, hr, proc, assessment):
    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "requiredAssessments": [assessment["id"]]})


def test_unassigned_assessment_is_invisible(app_client):
    _app, client = app_client
    _hr, cand, assessment, _proc = _setup(client)

    assert _ok(client, cand["token"], "ASSESSMENT_LIST")["items"] == []
    assert _error_code(client, cand["token"], "ASSESSMENT_GET", {"id": assessment["id"]}) == "NOT_FOUND"
    assert _error_code(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]}) == "NOT_FOUND"


def test_candidate_view_hides_correct_answers(app_client):
    _app, client = app_client
    hr, cand, assessment, proc = _setup(client)
    _assign(client, hr, proc, assessment)

    seen = _ok(client, cand["token"], "ASSESSMENT_GET", {"id": assessment["id"]})
    assert len(seen["questions"]) == 3
    assert all("correctAnswer" not in q for q in seen["questions"])

    full = _ok(client, hr["token"], "ASSESSMENT_GET", {"id": assessment["id"]})
    assert full["questions"][0]["correctAnswer"] == "Airway"


def test_start_submit_grades_and_marks_process(app_client):
    _app, client = app_client
    hr, cand, assessment, proc = _setup(client, time_limit=30)
    _assign(client, hr, proc, assessment)

    started = _ok(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]})
    result = started["result"]
    assert result["status"] == "in_progress"
    assert result["processId"] == proc["id"]
    assert result["deadline"]

    again = _ok(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]})
    assert again["result"]["id"] == result["id"]

    q = {x["question"]: x["id"] for x in started["assessment"]["questions"]}
    answers = {
        q["First responder priority?"]: "Airway",
        q["CPR is 30:2"]: "false",
        q["Describe a triage call"]: "I would assess breathing first",
    }
    out = _ok(client, cand["token"], "ASSESSMENT_SUBMIT", {"resultId": result["id"], "answers": answers})
    assert out["status"] == "completed"
    assert out["score"] == 75
    assert out["passed"] is True

    assert _error_code(client, cand["token"], "ASSESSMENT_SUBMIT", {"resultId": result["id"], "answers": {}}) == "CONFLICT"

    detail = _ok(client, hr["token"], "PROCESS_GET", {"id": proc["id"]})
    assert detail["completedAssessments"] == [assessment["id"]]
    assert [r["score"] for r in detail["results"]] == [75]


def test_late_submission_expires(app_client):
    _app, client = app_client
    hr, cand, assessment, proc = _setup(client, time_limit=10)
    _assign(client, hr, proc, assessment)
    result = _ok(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]})["result"]

    with SessionLocal() as db:
        db.get(AssessmentResult, result["id"]).start_time = to_iso_utc(datetime.now(timezone.utc) - timedelta(hours=1))
        db.commit()

    out = _ok(client, cand["token"], "ASSESSMENT_SUBMIT", {"resultId": result["id"], "answers": {}})
    assert out["status"] == "expired"
    assert out["score"] is None

    with SessionLocal() as db:
        assert db.get(SelectionProcess, proc["id"]).completed_assessments == []


def test_expiry_sweep(app_client):
    _app, client = app_client
    hr, cand, assessment, proc = _setup(client, time_limit=5)
    _assign(client, hr, proc, assessment)
    result = _ok(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]})["result"]

    with SessionLocal() as db:
        assert expire_overdue_results(db) == 0
        later = datetime.now(timezone.utc) + timedelta(minutes=6)
        assert expire_overdue_results(db, now=later) == 1
        db.commit()
        row = db.get(AssessmentResult, result["id"])
        assert row.status == "expired"

    assert _ok(client, hr["token"], "ASSESSMENT_EXPIRE_SWEEP")["expired"] == 0


def test_invalid_question_is_rejected(app_client):
    _app, client = app_client
    hr, _cand, assessment, _proc = _setup(client)

    bad = [{"question": "Pick one", "questionType": "multiple_choice", "options": ["a", "b"], "correctAnswer": "c"}]
    body = client.post(
        "/api",
        json={"action": "ASSESSMENT_QUESTIONS_SAVE", "token": hr["token"], "data": {"assessmentId": assessment["id"], "questions": bad}},
    ).get_json()
    assert body["error"]["code"] == "BAD_REQUEST"
    assert body["error"]["field"] == "correctAnswer"

    # The original questions survive the failed replace.
    assert len(_ok(client, hr["token"], "ASSESSMENT_GET", {"id": assessment["id"]})["questions"]) == 3


def test_results_are_private(app_client):
    _app, client = app_client
    hr, cand, assessment, proc = _setup(client)
    _assign(client, hr, proc, assessment)
    _ok(client, cand["token"], "ASSESSMENT_START", {"assessmentId": assessment["id"]})

    assert len(_ok(client, cand["token"], "ASSESSMENT_RESULTS_LIST")["items"]) == 1
    assert len(_ok(client, hr["token"], "ASSESSMENT_RESULTS_LIST", {"assessmentId": assessment["id"]})["items"]) == 1

    with SessionLocal() as db:
        rows = db.execute(select(AssessmentResult)).scalars().all()
        assert [r.candidate_id for r in rows] == [cand["id"]]
