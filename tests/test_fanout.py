from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

from sqlalchemy import func, select

import fanout
from _support import _create_offer, _hr_and_candidate, _in_days, _login, _ok, _seed_user, _upload
from db import SessionLocal
from models import Activity, EmailNotification, Notification


def _notifications(user_id: str, type_: str) -> list[Notification]:
    with SessionLocal() as db:
        return list(
            db.execute(
                select(Notification)
                .where(Notification.user_id == user_id, Notification.type == type_)
                .order_by(Notification.created_at)
            ).scalars()
        )


def _emails(user_id: str, type_: str) -> list[EmailNotification]:
    with SessionLocal() as db:
        return list(
            db.execute(
                select(EmailNotification).where(EmailNotification.recipient_id == user_id, EmailNotification.type == type_)
            ).scalars()
        )


def _process(client, hr, cand, **extra) -> dict:
    offer = _create_offer(client, hr["token"])
    data = {"jobOfferId": offer["id"], "candidateId": cand["id"]}
    data.update(extra)
    return _ok(client, hr["token"], "PROCESS_CREATE", data)


def test_process_status_change_notifies_once_and_queues_email(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)

    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "status": "in_progress"})

    notes = _notifications(cand["id"], "process_update")
    assert len(notes) == 1
    assert notes[0].related_id == proc["id"]
    assert "started" in notes[0].content
    emails = _emails(cand["id"], "process_update")
    assert len(emails) == 1
    assert emails[0].status == "pending"


def test_process_rejection_sets_end_date_and_uses_rejection_text(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)

    out = _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "status": "rejected"})
    assert out["endDate"]
    assert "rejected" in _notifications(cand["id"], "process_update")[0].content


def test_process_notes_update_does_not_notify(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)

    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "notes": "call back on Monday"})

    assert _notifications(cand["id"], "process_update") == []
    assert _emails(cand["id"], "process_update") == []


def test_assessment_assignment_notifies_only_when_list_grows(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    a1 = _ok(client, hr["token"], "ASSESSMENT_CREATE", {"name": "Triage", "skillType": "medical"})
    a2 = _ok(client, hr["token"], "ASSESSMENT_CREATE", {"name": "Driving", "skillType": "driving"})
    proc = _process(client, hr, cand)

    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "requiredAssessments": [a1["id"]]})
    assert len(_notifications(cand["id"], "assessment_assigned")) == 1
    assert len(_emails(cand["id"], "assessment_invitation")) == 1

    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "requiredAssessments": [a1["id"], a2["id"]]})
    assert len(_notifications(cand["id"], "assessment_assigned")) == 2

    _ok(client, hr["token"], "PROCESS_UPDATE", {"id": proc["id"], "requiredAssessments": []})
    assert len(_notifications(cand["id"], "assessment_assigned")) == 2
    assert len(_emails(cand["id"], "assessment_invitation")) == 2


def test_unknown_required_assessment_is_rejected(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)

    body = client.post(
        "/api",
        json={"action": "PROCESS_UPDATE", "token": hr["token"], "data": {"id": proc["id"], "requiredAssessments": ["nope"]}},
    ).get_json()
    assert body["error"]["code"] == "CONSTRAINT_VIOLATION"
    assert body["error"]["field"] == "required_assessments"


def test_evaluation_completion_notifies_candidate(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand, stages=["Interview"])
    stage_id = proc["stages"][0]["id"]

    ev = _ok(client, hr["token"], "EVALUATION_SAVE", {"stageId": stage_id, "score": 80})
    assert ev["status"] == "pending"
    assert _notifications(cand["id"], "evaluation_complete") == []

    _ok(client, hr["token"], "EVALUATION_SAVE", {"id": ev["id"], "status": "passed"})
    notes = _notifications(cand["id"], "evaluation_complete")
    assert len(notes) == 1
    assert notes[0].related_id == proc["id"]
    assert len(_emails(cand["id"], "evaluation_complete")) == 1


def test_interview_schedule_notification_formats_date(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    proc = _process(client, hr, cand)

    _ok(
        client,
        hr["token"],
        "INTERVIEW_SCHEDULE",
        {"processId": proc["id"], "scheduledDate": "2030-05-01T09:30:00Z", "durationMinutes": 45, "location": "HQ"},
    )

    notes = _notifications(cand["id"], "interview_scheduled")
    assert len(notes) == 1
    assert notes[0].content == "An interview has been scheduled for 01/05/2030 09:30"
    emails = _emails(cand["id"], "interview_scheduled")
    assert len(emails) == 1
    assert "45 minutes" in emails[0].content


def _document(client, cand, **extra) -> dict:
    up = _upload(client, cand["token"], "documents")
    data = {"title": "License", "type": "driver_license", "fileUrl": up["url"]}
    data.update(extra)
    return _ok(client, cand["token"], "DOCUMENT_CREATE", data)


def test_document_expiry_window(app_client):
    _app, client = app_client
    _hr, cand = _hr_and_candidate(client)

    soon = _document(client, cand, title="Soon", expiryDate=_in_days(10))
    _document(client, cand, title="Later", expiryDate=_in_days(40))
    _document(client, cand, title="Never")

    notes = _notifications(cand["id"], "document_expiry")
    assert len(notes) == 1
    assert notes[0].related_id == soon["id"]
    assert notes[0].content.startswith('The document "Soon" expires on ')


def test_document_expiry_update_into_window_notifies(app_client):
    _app, client = app_client
    _hr, cand = _hr_and_candidate(client)
    doc = _document(client, cand, expiryDate=_in_days(60))
    assert _notifications(cand["id"], "document_expiry") == []

    _ok(client, cand["token"], "DOCUMENT_UPDATE", {"id": doc["id"], "expiryDate": _in_days(5)})
    assert len(_notifications(cand["id"], "document_expiry")) == 1

    # Any later write to a document inside the window repeats the reminder.
    _ok(client, cand["token"], "DOCUMENT_UPDATE", {"id": doc["id"], "title": "Renamed"})
    assert len(_notifications(cand["id"], "document_expiry")) == 2


def test_review_of_expiring_document_repeats_expiry_notice(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    doc = _document(client, cand, expiryDate=_in_days(10))
    assert len(_notifications(cand["id"], "document_expiry")) == 1

    _ok(client, hr["token"], "DOCUMENT_REVIEW", {"id": doc["id"], "status": "approved"})

    notes = _notifications(cand["id"], "document_expiry")
    assert len(notes) == 2
    assert {n.related_id for n in notes} == {doc["id"]}


def test_write_outside_expiry_window_does_not_notify(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    doc = _document(client, cand, expiryDate=_in_days(45))

    _ok(client, hr["token"], "DOCUMENT_REVIEW", {"id": doc["id"], "status": "approved"})
    assert _notifications(cand["id"], "document_expiry") == []


def test_document_review_notifies_owner(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    doc = _document(client, cand)

    _ok(client, hr["token"], "DOCUMENT_REVIEW", {"id": doc["id"], "status": "approved", "comments": "ok"})

    notes = _notifications(cand["id"], "document_status")
    assert len(notes) == 1
    assert notes[0].content == 'The document "License" has been approved'


def test_new_job_offer_is_broadcast_to_candidates_only(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    other = _seed_user(email="other@example.com", role="candidate")

    offer = _create_offer(client, hr["token"], title="Nurse")

    for uid in (cand["id"], other):
        notes = _notifications(uid, "new_job_offer")
        assert len(notes) == 1
        assert notes[0].related_id == offer["id"]
        assert notes[0].content.endswith("Nurse")
    assert _notifications(hr["id"], "new_job_offer") == []


def test_broadcast_is_batched_and_capped(app_client):
    _app, client = app_client
    hr_id = _seed_user(email="hr@example.com", role="hr")
    for i in range(5):
        _seed_user(email=f"c{i}@example.com", role="candidate")
    token = _login(client, email="hr@example.com")

    fanout.configure(batch_size=2, broadcast_max=3)
    _create_offer(client, token)

    with SessionLocal() as db:
        total = db.execute(select(func.count(Notification.id)).where(Notification.type == "new_job_offer")).scalar_one()
    assert total == 3
    assert _notifications(hr_id, "new_job_offer") == []

    fanout.configure(batch_size=2, broadcast_max=0)
    _create_offer(client, token, title="Driver")
    with SessionLocal() as db:
        total = db.execute(select(func.count(Notification.id)).where(Notification.type == "new_job_offer")).scalar_one()
    assert total == 3 + 5


def test_job_offer_lifecycle_records_activities(app_client):
    _app, client = app_client
    hr, _cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"], title="Dispatcher")

    _ok(client, hr["token"], "JOB_OFFER_UPDATE", {"id": offer["id"], "location": "Sevilla"})
    _ok(client, hr["token"], "JOB_OFFER_DELETE", {"id": offer["id"]})

    with SessionLocal() as db:
        rows = {a.type: a for a in db.execute(select(Activity)).scalars()}
    assert sorted(rows) == ["create", "delete", "modify"]
    assert all(a.offer_id is None for a in rows.values())  # the offer is gone
    assert rows["delete"].description == "Job offer deleted: Dispatcher"
    assert rows["modify"].description == "Job offer modified: Dispatcher"

    items = _ok(client, hr["token"], "ACTIVITY_LIST")["items"]
    assert len(items) == 3
    assert items[0]["userName"] == "Rita Recruiter"


def test_application_status_notification_is_private_to_applicant(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"])
    application = _ok(client, cand["token"], "APPLICATION_CREATE", {"jobOfferId": offer["id"]})

    _ok(client, hr["token"], "APPLICATION_STATUS_SET", {"id": application["id"], "status": "accepted"})

    mine = _ok(client, cand["token"], "NOTIFICATION_LIST", {"type": "application_status"})["items"]
    assert len(mine) == 1
    assert "accepted" in mine[0]["content"]
    assert mine[0]["relatedId"] == offer["id"]

    theirs = _ok(client, hr["token"], "NOTIFICATION_LIST", {"type": "application_status"})["items"]
    assert theirs == []


def test_same_status_write_does_not_notify(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"])
    application = _ok(client, cand["token"], "APPLICATION_CREATE", {"jobOfferId": offer["id"]})

    _ok(client, hr["token"], "APPLICATION_STATUS_SET", {"id": application["id"], "status": "pending"})
    assert _notifications(cand["id"], "application_status") == []


def test_failing_handler_does_not_undo_the_write(app_client, monkeypatch):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    offer = _create_offer(client, hr["token"])
    application = _ok(client, cand["token"], "APPLICATION_CREATE", {"jobOfferId": offer["id"]})

    def boom(db, event):
        fanout.notify(db, event.row.user_id, "message", "Half written", "should be rolled back")
        raise RuntimeError("handler exploded")

    monkeypatch.setitem(fanout._HANDLERS, ("applications", "update"), [boom, fanout.application_status_notice])

    out = _ok(client, hr["token"], "APPLICATION_STATUS_SET", {"id": application["id"], "status": "rejected"})
    assert out["status"] == "rejected"

    assert len(_notifications(cand["id"], "application_status")) == 1
    assert _notifications(cand["id"], "message") == []


def test_message_notifies_receiver_with_sender_name(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)

    _ok(client, cand["token"], "MESSAGE_SEND", {"receiverId": hr["id"], "content": "Hello!"})

    notes = _notifications(hr["id"], "message")
    assert len(notes) == 1
    assert notes[0].content == "Message from Carlos Candidate"
    assert _notifications(cand["id"], "message") == []


def test_notification_read_flow(app_client):
    _app, client = app_client
    hr, cand = _hr_and_candidate(client)
    _create_offer(client, hr["token"], title="One")
    _create_offer(client, hr["token"], title="Two")

    listing = _ok(client, cand["token"], "NOTIFICATION_LIST")
    assert listing["unreadCount"] == 2
    first = listing["items"][0]

    assert _ok(client, cand["token"], "NOTIFICATION_MARK_READ", {"id": first["id"]})["read"] is True
    assert _ok(client, cand["token"], "NOTIFICATION_LIST", {"unreadOnly": True})["unreadCount"] == 1

    # Others' notifications are invisible.
    res = client.post(
        "/api", json={"action": "NOTIFICATION_MARK_READ", "token": hr["token"], "data": {"id": first["id"]}}
    ).get_json()
    assert res["error"]["code"] == "NOT_FOUND"

    assert _ok(client, cand["token"], "NOTIFICATION_MARK_ALL_READ")["updated"] == 1
    assert _ok(client, cand["token"], "NOTIFICATION_LIST")["unreadCount"] == 0

    cursor = listing["cursor"]
    assert _ok(client, cand["token"], "NOTIFICATION_LIST", {"since": cursor})["items"] == []


def test_notification_cursor_walks_rows_sharing_a_timestamp(app_client):
    _app, client = app_client
    _hr, cand = _hr_and_candidate(client)
    stamp = "2030-01-01T00:00:00.000Z"
    with SessionLocal() as db:
        seeded = [fanout.notify(db, cand["id"], "message", "Hi", f"n{i}").id for i in range(5)]
        for n in db.execute(select(Notification).where(Notification.id.in_(seeded))).scalars():
            n.created_at = stamp
        db.commit()

    seen: list[str] = []
    page = {"since": "2029-12-31T23:59:59.000Z", "limit": 2}
    for _ in range(5):
        out = _ok(client, cand["token"], "NOTIFICATION_LIST", page)
        if not out["items"]:
            break
        seen.extend(n["id"] for n in out["items"])
        page = {"since": out["cursor"], "sinceId": out["cursorId"], "limit": 2}

    assert sorted(seen) == sorted(seeded)
    assert len(seen) == len(set(seen))


def test_expires_soon_window_bounds():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert fanout.expires_soon("2030-01-31T00:00:00Z", now=now)
    assert not fanout.expires_soon("2030-01-31T00:00:01Z", now=now)
    assert not fanout.expires_soon("2030-01-01T00:00:00Z", now=now)
    assert not fanout.expires_soon("2029-12-01T00:00:00Z", now=now)
    assert not fanout.expires_soon(None, now=now)


def test_change_event_compares_written_columns_only():
    row = SimpleNamespace(id="x", status="accepted", title="t")
    ev = fanout.ChangeEvent(
        table="applications", kind="update", row=row, old={"status": "pending", "title": "t"}, columns=frozenset({"status"})
    )
    assert ev.changed("status")
    assert not ev.changed("title")
    assert ev.written("status")
    assert not ev.written("title")

    inserted = fanout.ChangeEvent(table="documents", kind="insert", row=row)
    assert inserted.changed("status") and inserted.written("expiry_date")
