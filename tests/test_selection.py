from __future__ import annotations

from _support import _call, _create_offer, _error_code, _hr_and_candidate, _login, _ok, _seed_user


def _process(client, hr, cand, **extra):
    offer = _create_offer(client, hr["token"])
    data = {"jobOfferId": offer["id"], "candidateId": cand["id"]}
    data.update(extra)
    return _ok(client, hr["token"], "PROCESS_CREATE", data)


def test_candidate_reads_own_process_detail_only(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    _seed_user(email="other@example.com", role="candidate")
    other = _login(client, email="other@example.com")
    proc = _process(client, hr, cand, stages=["Screening", "Interview"])
    _ok(client, hr["token"], "EVALUATION_SAVE", {"stageId": proc["stages"][0]["id"], "score": 60, "feedback": "ok"})

    detail = _ok(client, cand["token"], "PROCESS_GET", {"id": proc["id"]})
    assert [s["name"] for s in detail["stages"]] == ["Screening", "Interview"]
    assert detail["stages"][0]["evaluations"][0]["score"] == 60
    assert detail["jobOfferTitle"] == "Paramedic"

    assert _error_code(client, other, "PROCESS_GET", {"id": proc["id"]}) == "NOT_FOUND"
    assert _ok(client, other, "PROCESS_LIST")["items"] == []
    assert len(_ok(client, cand["token"], "PROCESS_LIST")["items"]) == 1


def test_stage_order_defaults_to_end(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand, stages=["Screening"])

    added = _ok(client, hr["token"], "STAGE_ADD", {"processId": proc["id"], "name": "Medical check"})
    assert added["orderIndex"] == 1
    assert added["isRequired"] is True

    _ok(client, hr["token"], "STAGE_UPDATE", {"id": added["id"], "orderIndex": 0, "isRequired": False})
    _ok(client, hr["token"], "STAGE_DELETE", {"id": proc["stages"][0]["id"]})

    stages = _ok(client, hr["token"], "PROCESS_GET", {"id": proc["id"]})["stages"]
    assert [(s["name"], s["isRequired"]) for s in stages] == [("Medical check", False)]


def test_evaluation_score_range_is_enforced(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand, stages=["Screening"])

    body = _call(client, hr["token"], "EVALUATION_SAVE", {"stageId": proc["stages"][0]["id"], "score": 101})
    assert body["error"]["code"] == "CONSTRAINT_VIOLATION"
    assert body["error"]["field"] == "score"

    body = _call(client, hr["token"], "EVALUATION_SAVE", {"stageId": proc["stages"][0]["id"], "status": "great"})
    assert body["error"]["field"] == "status"


def test_interview_update(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)
    iv = _ok(
        client,
        hr["token"],
        "INTERVIEW_SCHEDULE",
        {"processId": proc["id"], "scheduledDate": "2030-03-02T10:00:00Z", "durationMinutes": 30, "meetingLink": "https://meet.example.com/x"},
    )
    assert iv["status"] == "scheduled"
    assert iv["interviewerId"] == hr["id"]

    out = _ok(client, hr["token"], "INTERVIEW_UPDATE", {"id": iv["id"], "status": "completed", "notes": "Strong"})
    assert out["status"] == "completed"

    assert _error_code(client, hr["token"], "INTERVIEW_UPDATE", {"id": iv["id"], "durationMinutes": 0}) == "CONSTRAINT_VIOLATION"

    seen = _ok(client, cand["token"], "PROCESS_GET", {"id": proc["id"]})["interviews"]
    assert [i["id"] for i in seen] == [iv["id"]]


def test_process_for_unknown_candidate_is_constraint_violation(app_client):
    _app, client = app_client
    hr, _cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"])

    body = _call(client, hr["token"], "PROCESS_CREATE", {"jobOfferId": offer["id"], "candidateId": "ghost"})
    assert body["error"]["code"] == "CONSTRAINT_VIOLATION"
    assert body["error"]["field"] == "candidate_id"


def test_deleting_offer_cascades_to_processes(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"])
    proc = _ok(client, hr["token"], "PROCESS_CREATE", {"jobOfferId": offer["id"], "candidateId": cand["id"], "stages": ["A"]})

    _ok(client, hr["token"], "JOB_OFFER_DELETE", {"id": offer["id"]})
    assert _error_code(client, hr["token"], "PROCESS_GET", {"id": proc["id"]}) == "NOT_FOUND"
