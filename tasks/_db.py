from __future__ import annotations

from config import Config
from db import SessionLocal, init_engine

_cfg: Config | None = None


def worker_session():
    """Config and a DB session for task bodies; the engine is bound once per worker process."""
    global _cfg
    if _cfg is None:
        _cfg = Config()
        init_engine(_cfg.DATABASE_URL)
    return _cfg, SessionLocal()
