from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Optional

import redis
from dotenv import load_dotenv
from flask import Flask, g, request, send_file
from flask_cors import CORS
from sqlalchemy.exc import DBAPIError, IntegrityError

import fanout
from actions import dispatch
from auth import assert_permission, is_public_action, role_or_public, validate_session_token
from cache_layer import configure_cache
from config import Config
from db import SessionLocal, init_engine, ping_db
from models import AuditLog
from storage import BUCKETS, PUBLIC_BUCKETS, BlobStore, can_read_blob, split_path
from utils import (
    ApiError,
    AuthContext,
    SimpleRateLimiter,
    err,
    iso_utc_now,
    now_monotonic,
    ok,
    parse_json_body,
    redact_for_audit,
)


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _request_token(body: Optional[dict] = None) -> str:
    token = str((body or {}).get("token") or "").strip()
    if token:
        return token
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip() or str(request.args.get("token") or "").strip()


def _ping_redis() -> bool:
    """Broker reachability; skipped when REDIS_URL is not set."""
    redis_url = str(os.getenv("REDIS_URL", "") or "").strip()
    if not redis_url:
        return True
    try:
        redis.from_url(redis_url, socket_connect_timeout=2).ping()
        return True
    except redis.RedisError:
        return False


def _client_ip() -> str:
    return str(request.headers.get("X-Forwarded-For", request.remote_addr or "") or "").split(",")[0].strip()


def _audit_row(action: str, auth_ctx: Optional[AuthContext], stage_tag: str, remark: str, meta: dict) -> AuditLog:
    return AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=str(action or "").upper() or "UNKNOWN",
        stageTag=stage_tag,
        remark=remark,
        actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        at=iso_utc_now(),
        correlationId=str(getattr(g, "request_id", "") or ""),
        metaJson=json.dumps(meta, default=str),
    )


def _write_error_audit(action: str, auth_ctx: Optional[AuthContext], data: Any, err_obj: ApiError):
    db2 = SessionLocal()
    try:
        db2.add(
            _audit_row(
                action,
                auth_ctx,
                "API_ERROR",
                f"{err_obj.code}: {err_obj.message}",
                {"data": redact_for_audit(data or {}), "error": {"code": err_obj.code, "message": err_obj.message}},
            )
        )
        db2.commit()
    except DBAPIError:
        db2.rollback()
        logging.getLogger("api").warning("failed to write error audit for action=%s", action)
    finally:
        db2.close()


def _error_response(e: ApiError):
    return err(e.code, e.message, http_status=e.http_status, field=e.field)


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init

    Base.metadata.create_all(bind=engine)

    configure_cache(cfg.CACHE_TTL_SECONDS)
    fanout.configure(batch_size=cfg.FANOUT_BATCH_SIZE, broadcast_max=cfg.FANOUT_BROADCAST_MAX)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["BLOB_STORE"] = BlobStore.from_config(cfg)
    app.config["MAX_CONTENT_LENGTH"] = cfg.MAX_UPLOAD_BYTES + 64 * 1024

    CORS(app, origins=cfg.ALLOWED_ORIGINS, supports_credentials=False)

    limiter = SimpleRateLimiter()
    api_log = logging.getLogger("api")

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/health")
    def health():
        from cache_layer import cache_stats
        from db import get_pool_stats

        return ok({"status": "ok", "db_pool": get_pool_stats(), "cache": cache_stats()})[0]

    @app.get("/ready")
    def ready():
        db_ok = ping_db()
        redis_ok = _ping_redis()
        all_ok = db_ok and redis_ok
        body = {
            "status": "ok" if all_ok else "degraded",
            "time": iso_utc_now(),
            "checks": {"db": "ok" if db_ok else "error", "redis": "ok" if redis_ok else "error"},
        }
        return body, (200 if all_ok else 503)

    @app.get("/")
    def index():
        return ok(
            {
                "status": "ok",
                "message": "Recruitment backend is running. Use POST /api for actions.",
                "endpoints": {"health": "/health", "ready": "/ready", "api": "/api", "upload": "/api/files/<bucket>", "files": "/files/<path>"},
            }
        )[0]

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"No route for {request.path}", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.", http_status=405)

    @app.errorhandler(413)
    def too_large(_e):
        return err("BAD_REQUEST", f"Max upload size is {cfg.MAX_UPLOAD_BYTES} bytes", http_status=413)

    def _authenticate(db, token: str) -> AuthContext:
        auth_ctx = validate_session_token(db, token)
        if not auth_ctx.valid:
            raise ApiError("AUTH_INVALID", "Invalid or expired session")
        return auth_ctx

    @app.post("/api")
    def api_route():
        raw = request.get_data(as_text=True)
        db = None
        auth_ctx = None
        action_u = ""
        data: Any = {}

        try:
            body = parse_json_body(raw)
            action_u = str(body.get("action") or "").upper().strip()
            token = _request_token(body)
            data = body.get("data") or {}

            if not action_u:
                raise ApiError("BAD_REQUEST", "Missing action")

            ip = _client_ip()
            if action_u == "LOGIN_EXCHANGE":
                limiter.check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
            else:
                limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
                limiter.check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)

            db = SessionLocal()

            if not is_public_action(action_u):
                auth_ctx = _authenticate(db, token)

            assert_permission(role_or_public(auth_ctx), action_u)

            out = dispatch(action_u, data, auth_ctx, db, cfg)

            db.add(_audit_row(action_u, auth_ctx, "API_CALL", "", {"data": redact_for_audit(data)}))
            db.commit()

            latency_ms = int((now_monotonic() - g.start_ts) * 1000)
            api_log.info(
                "request_id=%s action=%s user=%s role=%s latency_ms=%s",
                g.request_id,
                action_u,
                (auth_ctx.userId if auth_ctx else "PUBLIC"),
                (auth_ctx.role if auth_ctx else "PUBLIC"),
                latency_ms,
            )
            return ok(out)[0]
        except ApiError as e:
            if db is not None:
                db.rollback()
            _write_error_audit(action_u, auth_ctx, data, e)
            return _error_response(e)
        except IntegrityError as e:
            if db is not None:
                db.rollback()
            api_err = ApiError("CONSTRAINT_VIOLATION", "Constraint violation")
            _write_error_audit(action_u, auth_ctx, data, api_err)
            api_log.warning("request_id=%s action=%s integrity error: %s", g.request_id, action_u, e.orig)
            return _error_response(api_err)
        except DBAPIError as e:
            if db is not None:
                db.rollback()

            orig_msg = re.sub(r"\s+", " ", str(getattr(e, "orig", "") or "")).strip()[:300]
            if cfg.IS_PRODUCTION or not orig_msg:
                msg = f"Database error (requestId: {g.request_id})"
            else:
                msg = f"Database error: {orig_msg} (requestId: {g.request_id})"

            api_err = ApiError("INTERNAL", msg, http_status=500)
            _write_error_audit(action_u, auth_ctx, data, api_err)
            api_log.exception("request_id=%s action=%s", g.request_id, action_u)
            return _error_response(api_err)
        except Exception as e:
            if db is not None:
                db.rollback()

            if cfg.IS_PRODUCTION:
                msg = f"Unexpected error (requestId: {g.request_id})"
            else:
                msg = f"Unexpected error: {type(e).__name__} (requestId: {g.request_id})"

            api_err = ApiError("INTERNAL", msg, http_status=500)
            _write_error_audit(action_u, auth_ctx, data, api_err)
            api_log.exception("request_id=%s action=%s", g.request_id, action_u)
            return _error_response(api_err)
        finally:
            if db is not None:
                db.close()

    @app.post("/api/files/<bucket>")
    def files_upload(bucket: str):
        blobs: BlobStore = app.config["BLOB_STORE"]
        db = SessionLocal()
        try:
            limiter.check(f"{_client_ip()}:UPLOAD", cfg.RATE_LIMIT_DEFAULT)
            auth_ctx = _authenticate(db, _request_token())
            if bucket not in BUCKETS:
                raise ApiError("BAD_REQUEST", "Unknown bucket")

            up = request.files.get("file")
            if not up:
                raise ApiError("BAD_REQUEST", "Missing file", field="file")
            blob = up.read() or b""
            if not blob:
                raise ApiError("BAD_REQUEST", "Empty file", field="file")
            if len(blob) > cfg.MAX_UPLOAD_BYTES:
                raise ApiError("BAD_REQUEST", f"Max upload size is {cfg.MAX_UPLOAD_BYTES} bytes", http_status=413)

            path = blobs.new_path(bucket, auth_ctx.userId, str(getattr(up, "filename", "") or ""))
            url = blobs.put(path, blob)

            db.add(_audit_row("FILE_UPLOAD", auth_ctx, "FILE_UPLOAD", "", {"path": path, "size": len(blob)}))
            db.commit()
            return ok({"url": url, "path": path, "size": len(blob)})[0]
        except ApiError as e:
            db.rollback()
            return _error_response(e)
        finally:
            db.close()

    @app.get("/files/<path:path>")
    def files_get(path: str):
        blobs: BlobStore = app.config["BLOB_STORE"]
        db = SessionLocal()
        try:
            bucket, _owner, _name = split_path(path)
            actor_id, role = "", ""
            if bucket not in PUBLIC_BUCKETS:
                auth_ctx = _authenticate(db, _request_token())
                actor_id, role = auth_ctx.userId, auth_ctx.role
            if not can_read_blob(db, actor_id=actor_id, role=role, path=path):
                # Same answer as a missing blob.
                raise ApiError("NOT_FOUND", "File not found")

            full, mime = blobs.open_path(path)
            resp = send_file(full, mimetype=mime, as_attachment=False, download_name=os.path.basename(full))
            resp.headers["X-Content-Type-Options"] = "nosniff"
            return resp
        except ApiError as e:
            return _error_response(e)
        finally:
            db.close()

    return app


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]

    os.makedirs(cfg.UPLOAD_DIR, exist_ok=True)
    app.run(host=cfg.HOST, port=cfg.PORT)
