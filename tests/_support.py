from __future__ import annotations

import io
import json
from datetime import datetime, timedelta, timezone

from db import SessionLocal
from models import Identity, Profile
from utils import iso_utc_now, new_uuid, to_iso_utc


def _seed_user(*, email: str, role: str = "candidate", first_name: str = "Test", last_name: str = "User") -> str:
    now = iso_utc_now()
    uid = new_uuid()
    with SessionLocal() as db:
        db.add(Identity(id=uid, email=email, status="ACTIVE", lastLoginAt="", createdAt=now))
        db.flush()
        db.add(
            Profile(
                id=uid,
                role=role,
                first_name=first_name,
                last_name=last_name,
                emergency_titles=[],
                other_titles=[],
                created_at=now,
                updated_at=now,
            )
        )
        db.commit()
    return uid


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _login(client, *, email: str) -> str:
    res = _api(client, {"action": "LOGIN_EXCHANGE", "token": None, "data": {"idToken": f"TEST:{email}"}})
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    return body["data"]["sessionToken"]


def _call(client, token: str, action: str, data: dict | None = None) -> dict:
    """POST an action and return the JSON envelope (status code is asserted by callers when relevant)."""
    return _api(client, {"action": action, "token": token, "data": data or {}}).get_json()


def _ok(client, token: str, action: str, data: dict | None = None):
    body = _call(client, token, action, data)
    assert body["ok"] is True, body
    return body["data"]


def _error_code(client, token: str, action: str, data: dict | None = None) -> str:
    body = _call(client, token, action, data)
    assert body["ok"] is False, body
    return body["error"]["code"]


def _upload(client, token: str, bucket: str, *, name: str = "file.pdf", content: bytes = b"%PDF-1.4 test") -> dict:
    res = client.post(
        f"/api/files/{bucket}",
        data={"file": (io.BytesIO(content), name)},
        headers={"Authorization": f"Bearer {token}"},
        content_type="multipart/form-data",
    )
    body = res.get_json()
    assert body["ok"] is True, body
    return body["data"]


def _in_days(days: float) -> str:
    return to_iso_utc(datetime.now(timezone.utc) + timedelta(days=days))


def _hr_and_candidate(client):
    hr_id = _seed_user(email="hr@example.com", role="hr", first_name="Rita", last_name="Recruiter")
    cand_id = _seed_user(email="cand@example.com", role="candidate", first_name="Carlos", last_name="Candidate")
    return (
        {"id": hr_id, "token": _login(client, email="hr@example.com")},
        {"id": cand_id, "token": _login(client, email="cand@example.com")},
    )


def _create_offer(client, hr_token: str, **overrides) -> dict:
    data = {
        "title": "Paramedic",
        "description": "Emergency response unit",
        "requirements": "Valid license",
        "location": "Madrid",
        "category": "emergencies",
        "workType": "full_time",
    }
    data.update(overrides)
    return _ok(client, hr_token, "JOB_OFFER_CREATE", data)
