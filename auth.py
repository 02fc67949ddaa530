from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select

from cache_layer import cache_delete, cache_get_or_set, role_key
from models import Identity, Profile, Session as DbSession
from utils import (
    ApiError,
    AuthContext,
    ROLE_CANDIDATE,
    ROLE_HR,
    iso_utc_now,
    new_uuid,
    normalize_role,
    parse_datetime_maybe,
    sha256_hex,
    to_iso_utc,
)


PUBLIC_ACTIONS = {"LOGIN_EXCHANGE"}

_ANY = [ROLE_HR, ROLE_CANDIDATE]
_HR = [ROLE_HR]
_CANDIDATE = [ROLE_CANDIDATE]

STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN_EXCHANGE": ["PUBLIC"],
    "SESSION_VALIDATE": _ANY,
    "GET_ME": _ANY,
    "LOGOUT": _ANY,
    # Profiles
    "PROFILE_GET": _ANY,
    "PROFILE_UPDATE": _ANY,
    "PROFILE_LIST": _HR,
    "WORK_EXPERIENCE_ADD": _ANY,
    "WORK_EXPERIENCE_LIST": _ANY,
    "WORK_EXPERIENCE_DELETE": _ANY,
    # Job offers
    "JOB_OFFER_LIST": _ANY,
    "JOB_OFFER_GET": _ANY,
    "JOB_OFFER_CREATE": _HR,
    "JOB_OFFER_UPDATE": _HR,
    "JOB_OFFER_DELETE": _HR,
    # Applications
    "APPLICATION_CREATE": _CANDIDATE,
    "APPLICATION_LIST": _ANY,
    "APPLICATION_STATUS_SET": _HR,
    # Selection processes
    "PROCESS_CREATE": _HR,
    "PROCESS_GET": _ANY,
    "PROCESS_LIST": _ANY,
    "PROCESS_UPDATE": _HR,
    "STAGE_ADD": _HR,
    "STAGE_UPDATE": _HR,
    "STAGE_DELETE": _HR,
    "EVALUATION_SAVE": _HR,
    "INTERVIEW_SCHEDULE": _HR,
    "INTERVIEW_UPDATE": _HR,
    # Evaluation templates
    "TEMPLATE_LIST": _HR,
    "TEMPLATE_CREATE": _HR,
    "TEMPLATE_UPDATE": _HR,
    "TEMPLATE_DELETE": _HR,
    "TEMPLATE_DUPLICATE": _HR,
    "CRITERION_ADD": _HR,
    "CRITERION_DELETE": _HR,
    # Skill assessments
    "ASSESSMENT_LIST": _ANY,
    "ASSESSMENT_GET": _ANY,
    "ASSESSMENT_CREATE": _HR,
    "ASSESSMENT_QUESTIONS_SAVE": _HR,
    "ASSESSMENT_START": _CANDIDATE,
    "ASSESSMENT_SUBMIT": _CANDIDATE,
    "ASSESSMENT_RESULTS_LIST": _ANY,
    "ASSESSMENT_EXPIRE_SWEEP": _HR,
    # Documents
    "DOCUMENT_CREATE": _ANY,
    "DOCUMENT_LIST": _ANY,
    "DOCUMENT_REPLACE_FILE": _ANY,
    "DOCUMENT_UPDATE": _ANY,
    "DOCUMENT_DELETE": _ANY,
    "DOCUMENT_VERSIONS": _ANY,
    "DOCUMENT_REVIEW": _HR,
    "DOCUMENT_APPROVALS": _ANY,
    # Messaging and notifications
    "MESSAGE_SEND": _ANY,
    "MESSAGE_LIST": _ANY,
    "MESSAGE_MARK_READ": _ANY,
    "NOTIFICATION_LIST": _ANY,
    "NOTIFICATION_MARK_READ": _ANY,
    "NOTIFICATION_MARK_ALL_READ": _ANY,
    "EMAIL_OUTBOX_LIST": _ANY,
    # Dashboard
    "ACTIVITY_LIST": _HR,
    "DASHBOARD_METRICS": _HR,
}


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def verify_google_id_token(id_token: str, google_client_id: str, allow_test_tokens: bool = False) -> dict[str, Any]:
    if not id_token or not isinstance(id_token, str):
        raise ApiError("BAD_REQUEST", "Missing idToken")

    if allow_test_tokens and id_token.startswith("TEST:"):
        email = id_token.split(":", 1)[1].strip().lower()
        if not email or "@" not in email:
            raise ApiError("AUTH_INVALID", "Invalid test token")
        return {"email": email, "fullName": "", "picture": "", "sub": "TEST", "exp": 0}

    if not google_client_id:
        raise ApiError("INTERNAL", "Missing GOOGLE_CLIENT_ID")

    try:
        req = google_requests.Request()
        payload = google_id_token.verify_oauth2_token(id_token, req, audience=google_client_id)
    except ValueError:
        raise ApiError("AUTH_INVALID", "Invalid Google ID token")
    except Exception as e:
        raise ApiError("UPSTREAM_FAILURE", "Identity provider unavailable") from e

    if payload.get("aud") != google_client_id:
        raise ApiError("AUTH_INVALID", "Google token audience mismatch")

    if str(payload.get("email_verified", "")).lower() != "true":
        raise ApiError("AUTH_INVALID", "Google email not verified")

    return {
        "email": str(payload.get("email", "")).lower(),
        "fullName": payload.get("name", "") or "",
        "picture": payload.get("picture", "") or "",
        "sub": payload.get("sub", "") or "",
        "exp": payload.get("exp", 0) or 0,
    }


def issue_session_token(db, *, user_id: str, email: str, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            userId=str(user_id or ""),
            email=str(email or ""),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def revoke_user_sessions(db, *, user_id: str) -> int:
    """Revoke every active session of the identity (LOGOUT signs out all devices)."""
    uid = str(user_id or "").strip()
    if not uid:
        return 0
    now = iso_utc_now()
    rows = db.execute(select(DbSession).where(DbSession.userId == uid, DbSession.revokedAt == "")).scalars().all()
    for s in rows:
        s.revokedAt = now
    return len(rows)


def role_for_user(db, user_id: str) -> str:
    """The profile role, cached; "" when the identity has no profile."""
    uid = str(user_id or "").strip()
    if not uid:
        return ""

    def _load() -> Optional[str]:
        role = db.execute(select(Profile.role).where(Profile.id == uid)).scalar_one_or_none()
        return normalize_role(role) or None

    return cache_get_or_set(role_key(uid), _load) or ""


def invalidate_role(user_id: str) -> None:
    cache_delete(role_key(user_id))


_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _INVALID

    ident = db.get(Identity, ses.userId)
    if ident is None:
        return _INVALID
    if str(ident.status or "").upper() != "ACTIVE":
        raise ApiError("FORBIDDEN", "Identity is disabled")

    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= 300:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=str(ses.userId or ""),
        email=str(ses.email or ""),
        role=role_for_user(db, ses.userId),
        expiresAt=str(ses.expiresAt or ""),
    )


def assert_permission(role: str, action: str) -> None:
    role_l = normalize_role(role)
    action_u = str(action or "").upper().strip()

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if allowed is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    if is_public_action(action_u):
        return
    if not role_l:
        raise ApiError("AUTH_INVALID", "Login required")
    if role_l not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_l}")


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"


def serialize_auth(auth: AuthContext) -> dict[str, Any]:
    return {
        "valid": bool(auth.valid),
        "expiresAt": auth.expiresAt,
        "me": {"userId": auth.userId, "email": auth.email, "role": role_or_public(auth)},
    }
