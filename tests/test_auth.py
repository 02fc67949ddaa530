from __future__ import annotations

from sqlalchemy import select

from _support import _api, _call, _error_code, _login, _ok, _seed_user
from db import SessionLocal
from models import AuditLog, Identity, Profile


def test_first_login_bootstraps_candidate_profile(app_client):
    _app, client = app_client

    res = _api(client, {"action": "LOGIN_EXCHANGE", "token": None, "data": {"idToken": "TEST:New.Person@example.com"}})
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    assert body["data"]["me"]["email"] == "new.person@example.com"
    assert body["data"]["me"]["role"] == "candidate"

    with SessionLocal() as db:
        ident = db.execute(select(Identity).where(Identity.email == "new.person@example.com")).scalar_one()
        prof = db.get(Profile, ident.id)
        assert prof is not None
        assert prof.role == "candidate"


def test_bootstrap_email_gets_hr_role(app_client):
    _app, client = app_client
    token = _login(client, email="boss@example.com")

    me = _ok(client, token, "GET_ME")
    assert me["role"] == "hr"
    assert _ok(client, token, "SESSION_VALIDATE")["me"]["role"] == "hr"


def test_second_login_reuses_identity(app_client):
    _app, client = app_client
    _login(client, email="again@example.com")
    _login(client, email="again@example.com")

    with SessionLocal() as db:
        rows = db.execute(select(Identity).where(Identity.email == "again@example.com")).scalars().all()
        assert len(rows) == 1


def test_missing_or_bad_token_is_auth_invalid(app_client):
    _app, client = app_client

    res = _api(client, {"action": "GET_ME", "token": None, "data": {}})
    assert res.status_code == 401
    assert res.get_json()["error"]["code"] == "AUTH_INVALID"

    res = _api(client, {"action": "GET_ME", "token": "ST-nope", "data": {}})
    assert res.status_code == 401


def test_unknown_action_is_bad_request(app_client):
    _app, client = app_client
    token = _login(client, email="someone@example.com")

    res = _api(client, {"action": "DROP_EVERYTHING", "token": token, "data": {}})
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"


def test_candidate_cannot_call_hr_actions(app_client):
    _app, client = app_client
    _seed_user(email="cand@example.com", role="candidate")
    token = _login(client, email="cand@example.com")

    res = _api(client, {"action": "JOB_OFFER_CREATE", "token": token, "data": {"title": "x"}})
    assert res.status_code == 403
    assert res.get_json()["error"]["code"] == "FORBIDDEN"
    assert _error_code(client, token, "DASHBOARD_METRICS") == "FORBIDDEN"


def test_profile_role_cannot_be_changed_by_owner(app_client):
    _app, client = app_client
    uid = _seed_user(email="cand@example.com", role="candidate")
    token = _login(client, email="cand@example.com")

    assert _error_code(client, token, "PROFILE_UPDATE", {"role": "hr"}) == "FORBIDDEN"

    updated = _ok(client, token, "PROFILE_UPDATE", {"firstName": "Ana", "phone": "600000000"})
    assert updated["firstName"] == "Ana"
    assert updated["role"] == "candidate"

    with SessionLocal() as db:
        assert db.get(Profile, uid).role == "candidate"


def test_candidate_cannot_read_other_profiles(app_client):
    _app, client = app_client
    other = _seed_user(email="other@example.com", role="candidate")
    _seed_user(email="cand@example.com", role="candidate")
    token = _login(client, email="cand@example.com")

    assert _error_code(client, token, "PROFILE_GET", {"userId": other}) == "NOT_FOUND"


def test_logout_revokes_sessions(app_client):
    _app, client = app_client
    token_a = _login(client, email="cand@example.com")
    token_b = _login(client, email="cand@example.com")

    out = _ok(client, token_a, "LOGOUT")
    assert out["revoked"] == 2
    assert _error_code(client, token_a, "GET_ME") == "AUTH_INVALID"
    assert _error_code(client, token_b, "GET_ME") == "AUTH_INVALID"


def test_disabled_identity_is_forbidden(app_client):
    _app, client = app_client
    uid = _seed_user(email="cand@example.com", role="candidate")
    token = _login(client, email="cand@example.com")

    with SessionLocal() as db:
        db.get(Identity, uid).status = "DISABLED"
        db.commit()

    assert _error_code(client, token, "GET_ME") == "FORBIDDEN"


def test_errors_are_audited(app_client):
    _app, client = app_client
    token = _login(client, email="cand@example.com")
    _call(client, token, "JOB_OFFER_CREATE", {"title": "x"})

    with SessionLocal() as db:
        rows = db.execute(
            select(AuditLog).where(AuditLog.action == "JOB_OFFER_CREATE", AuditLog.stageTag == "API_ERROR")
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].remark.startswith("FORBIDDEN")
