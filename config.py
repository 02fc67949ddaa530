from __future__ import annotations

import os


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_csv(name: str) -> list[str]:
    return [p.strip() for p in _env_str(name).split(",") if p.strip()]


def _env_limit(name: str, default: str) -> tuple[int, int]:
    """Parse `<calls>/<seconds>`, e.g. `120/60`."""
    raw = _env_str(name, default)
    try:
        calls, window = raw.split("/", 1)
        return max(0, int(calls)), max(1, int(window))
    except ValueError:
        calls, window = default.split("/", 1)
        return int(calls), int(window)


class Config:
    def __init__(self):
        self.APP_ENV = _env_str("APP_ENV", "development").lower()
        self.IS_PRODUCTION = self.APP_ENV == "production"
        self.LOG_LEVEL = _env_str("LOG_LEVEL", "INFO").upper()
        self.HOST = _env_str("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 5002)

        self.DATABASE_URL = _env_str("DATABASE_URL", "sqlite:///./recruit.db")
        self.ALLOWED_ORIGINS = _env_csv("ALLOWED_ORIGINS") or ["http://localhost:5173"]

        # Identity provider
        self.GOOGLE_CLIENT_ID = _env_str("GOOGLE_CLIENT_ID")
        self.ALLOW_TEST_TOKENS = _env_bool("ALLOW_TEST_TOKENS", False)
        self.SESSION_TTL_MINUTES = max(5, _env_int("SESSION_TTL_MINUTES", 12 * 60))
        self.HR_BOOTSTRAP_EMAILS = {e.lower() for e in _env_csv("HR_BOOTSTRAP_EMAILS")}

        # Blob store
        self.UPLOAD_DIR = _env_str("UPLOAD_DIR", "./uploads")
        self.PUBLIC_BASE_URL = _env_str("PUBLIC_BASE_URL", "").rstrip("/")
        self.MAX_UPLOAD_BYTES = max(1024, _env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))

        self.RATE_LIMIT_GLOBAL = _env_limit("RATE_LIMIT_GLOBAL", "600/60")
        self.RATE_LIMIT_DEFAULT = _env_limit("RATE_LIMIT_DEFAULT", "120/60")
        self.RATE_LIMIT_LOGIN = _env_limit("RATE_LIMIT_LOGIN", "20/60")

        # Outbound mailer (drained by the Celery worker)
        self.MAIL_WEBHOOK_URL = _env_str("MAIL_WEBHOOK_URL")
        self.MAIL_WEBHOOK_TOKEN = _env_str("MAIL_WEBHOOK_TOKEN")
        self.MAIL_MAX_ATTEMPTS = max(1, _env_int("MAIL_MAX_ATTEMPTS", 3))
        self.MAIL_BATCH_SIZE = max(1, _env_int("MAIL_BATCH_SIZE", 100))

        self.REDIS_URL = _env_str("REDIS_URL", "redis://localhost:6379/0")
        self.ENABLE_EXPIRY_SWEEP = _env_bool("ENABLE_EXPIRY_SWEEP", False)

        # Change-notification fan-out
        self.FANOUT_BATCH_SIZE = max(1, _env_int("FANOUT_BATCH_SIZE", 500))
        self.FANOUT_BROADCAST_MAX = max(0, _env_int("FANOUT_BROADCAST_MAX", 0))
        self.CACHE_TTL_SECONDS = max(1, _env_int("CACHE_TTL_SECONDS", 60))

    def validate(self) -> None:
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is required")
        if self.IS_PRODUCTION:
            if not self.GOOGLE_CLIENT_ID:
                raise RuntimeError("GOOGLE_CLIENT_ID is required in production")
            if self.ALLOW_TEST_TOKENS:
                raise RuntimeError("ALLOW_TEST_TOKENS must be off in production")
