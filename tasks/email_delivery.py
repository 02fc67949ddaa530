from __future__ import annotations

import logging

from mailer import WebhookMailer, deliver_pending
from tasks import celery_app
from tasks._db import worker_session


log = logging.getLogger("tasks")


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def deliver_pending_emails(self):
    """Drain pending EmailNotification rows through the mail webhook."""
    cfg, db = worker_session()
    try:
        mailer = WebhookMailer.from_config(cfg)
        if mailer is None:
            log.info("MAIL_WEBHOOK_URL not set; leaving emails pending")
        return deliver_pending(db, mailer, batch_size=cfg.MAIL_BATCH_SIZE, max_attempts=cfg.MAIL_MAX_ATTEMPTS)
    finally:
        db.close()
