from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()

# Bound in init_engine(); modules import this name directly.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False, future=True)

_engine: Engine | None = None


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite needs manual BEGIN for SAVEPOINTs to behave, and FKs are off by default.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine(database_url: str) -> Engine:
    global _engine

    url = str(database_url or "").strip()
    if not url:
        raise RuntimeError("Missing DATABASE_URL")

    kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=10, max_overflow=20, pool_recycle=1800)

    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        _install_sqlite_hooks(engine)

    if _engine is not None:
        _engine.dispose()
    _engine = engine
    SessionLocal.configure(bind=engine)
    return engine


def get_pool_stats() -> dict[str, Any]:
    if _engine is None:
        return {"initialized": False}
    pool = _engine.pool
    status = getattr(pool, "status", None)
    return {"initialized": True, "status": status() if callable(status) else ""}


def ping_db() -> bool:
    if _engine is None:
        return False
    try:
        with _engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except DBAPIError:
        return False
