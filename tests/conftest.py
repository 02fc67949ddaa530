from __future__ import annotations

import pytest

from cache_layer import cache_clear


@pytest.fixture()
def app_client(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("ALLOW_TEST_TOKENS", "1")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("HR_BOOTSTRAP_EMAILS", "boss@example.com")
    monkeypatch.setenv("RATE_LIMIT_GLOBAL", "100000/60")
    monkeypatch.setenv("RATE_LIMIT_DEFAULT", "100000/60")
    monkeypatch.setenv("RATE_LIMIT_LOGIN", "100000/60")
    monkeypatch.delenv("MAIL_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("FANOUT_BROADCAST_MAX", raising=False)
    monkeypatch.delenv("FANOUT_BATCH_SIZE", raising=False)
    cache_clear()

    from server import create_app

    app = create_app()
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield app, client
    cache_clear()
