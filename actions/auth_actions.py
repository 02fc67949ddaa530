from __future__ import annotations

from sqlalchemy import func, select

import store
from actions.helpers import append_audit
from auth import invalidate_role, issue_session_token, revoke_user_sessions, serialize_auth, verify_google_id_token
from models import Identity, Profile
from utils import ApiError, AuthContext, ROLE_CANDIDATE, ROLE_HR, iso_utc_now, new_uuid


def _find_identity_by_email(db, email: str):
    email_lc = str(email or "").strip().lower()
    if not email_lc:
        return None
    return db.execute(select(Identity).where(func.lower(Identity.email) == email_lc)).scalars().first()


def _split_name(full_name: str) -> tuple[str, str]:
    parts = str(full_name or "").strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], (parts[1] if len(parts) > 1 else "")


def _bootstrap_profile(db, cfg, ident: Identity, full_name: str) -> Profile:
    role = ROLE_HR if ident.email.lower() in cfg.HR_BOOTSTRAP_EMAILS else ROLE_CANDIDATE
    first, last = _split_name(full_name)
    now = iso_utc_now()
    prof = Profile(
        id=ident.id,
        role=role,
        first_name=first,
        last_name=last,
        emergency_titles=[],
        other_titles=[],
        created_at=now,
        updated_at=now,
    )
    # Trusted write: nobody may insert a profile through the row policies.
    store.insert_row(db, None, prof)
    invalidate_role(ident.id)
    return prof


def login_exchange(data, auth: AuthContext | None, db, cfg):
    who = verify_google_id_token(
        (data or {}).get("idToken"),
        google_client_id=cfg.GOOGLE_CLIENT_ID,
        allow_test_tokens=bool(cfg.ALLOW_TEST_TOKENS),
    )
    email = str(who.get("email") or "").strip().lower()
    if not email:
        raise ApiError("AUTH_INVALID", "Identity has no email")

    now = iso_utc_now()
    ident = _find_identity_by_email(db, email)
    if not ident:
        ident = Identity(id=new_uuid(), email=email, status="ACTIVE", createdAt=now, lastLoginAt=now)
        db.add(ident)
        db.flush()
    elif str(ident.status or "").upper() != "ACTIVE":
        raise ApiError("AUTH_INVALID", "Identity is disabled")
    ident.lastLoginAt = now

    prof = db.get(Profile, ident.id)
    created = prof is None
    if created:
        prof = _bootstrap_profile(db, cfg, ident, str(who.get("fullName") or ""))

    ses = issue_session_token(db, user_id=ident.id, email=email, session_ttl_minutes=cfg.SESSION_TTL_MINUTES)

    actor = AuthContext(valid=True, userId=ident.id, email=email, role=prof.role, expiresAt=ses["expiresAt"])
    append_audit(
        db,
        entityType="AUTH",
        entityId=ident.id,
        action="LOGIN_EXCHANGE",
        stageTag="AUTH_LOGIN",
        actor=actor,
        meta={"profileCreated": created},
    )

    return {
        "sessionToken": ses["sessionToken"],
        "expiresAt": ses["expiresAt"],
        "me": {
            "userId": ident.id,
            "email": email,
            "role": prof.role,
            "firstName": prof.first_name,
            "lastName": prof.last_name,
        },
    }


def session_validate(data, auth: AuthContext | None, db, cfg):
    return serialize_auth(auth)


def get_me(data, auth: AuthContext | None, db, cfg):
    prof = db.get(Profile, auth.userId)
    if prof is None:
        raise ApiError("NOT_FOUND", "Profile not found")
    return {
        "userId": auth.userId,
        "email": auth.email,
        "role": prof.role,
        "firstName": prof.first_name,
        "lastName": prof.last_name,
        "displayName": prof.display_name,
        "profileImageUrl": prof.profile_image_url,
        "expiresAt": auth.expiresAt,
    }


def logout(data, auth: AuthContext | None, db, cfg):
    revoked = revoke_user_sessions(db, user_id=auth.userId)
    append_audit(db, entityType="AUTH", entityId=auth.userId, action="LOGOUT", stageTag="AUTH_LOGOUT", actor=auth)
    return {"revoked": revoked}
