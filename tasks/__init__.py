"""
Celery configuration for the mail drain and maintenance sweeps.

Usage:
    celery -A tasks.celery_app worker --beat --loglevel=INFO
"""
from __future__ import annotations

import os

from celery import Celery
from dotenv import load_dotenv


def make_celery() -> Celery:
    """
    Create and configure the Celery app with a Redis broker.

    Environment variables:
        REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
        CELERY_RESULT_BACKEND: Optional separate result backend
        MAIL_DRAIN_INTERVAL_SECONDS: beat interval of the mail drain (default 60)
        ENABLE_EXPIRY_SWEEP: schedule the assessment expiry sweep (default off)
    """
    load_dotenv()
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    result_backend = os.getenv("CELERY_RESULT_BACKEND", redis_url)

    app = Celery(
        "recruit",
        broker=redis_url,
        backend=result_backend,
        include=["tasks.email_delivery", "tasks.maintenance"],
    )

    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        result_expires=86400,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=int(os.getenv("CELERY_CONCURRENCY", "2")),
        task_default_retry_delay=60,
    )

    schedule = {
        "deliver-pending-emails": {
            "task": "tasks.email_delivery.deliver_pending_emails",
            "schedule": float(os.getenv("MAIL_DRAIN_INTERVAL_SECONDS", "60") or "60"),
        },
    }
    if str(os.getenv("ENABLE_EXPIRY_SWEEP", "") or "").strip().lower() in {"1", "true", "yes", "y", "on"}:
        schedule["expire-overdue-assessments"] = {
            "task": "tasks.maintenance.expire_overdue_assessments",
            "schedule": float(os.getenv("EXPIRY_SWEEP_INTERVAL_SECONDS", "300") or "300"),
        }
    app.conf.beat_schedule = schedule
    return app


celery_app = make_celery()
