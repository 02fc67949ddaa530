"""
Outbound mail delivery for queued EmailNotification rows.

Delivery goes through an HTTP webhook (any transactional-mail relay that
accepts JSON). Each attempt records `attempts`, and on failure `error_message`.
Rows stay `pending` until they are sent or run out of attempts.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from sqlalchemy import select

from models import EmailNotification, Identity
from utils import iso_utc_now


log = logging.getLogger("mailer")


class MailerError(Exception):
    pass


class WebhookMailer:
    def __init__(self, url: str, token: str = "", timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = str(url or "").strip()
        self.token = str(token or "").strip()
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Any) -> Optional["WebhookMailer"]:
        url = str(getattr(cfg, "MAIL_WEBHOOK_URL", "") or "").strip()
        if not url:
            return None
        return cls(url, getattr(cfg, "MAIL_WEBHOOK_TOKEN", ""))

    def send(self, *, to: str, subject: str, body: str, tag: str = "") -> None:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = self.session.post(
                self.url,
                json={"to": to, "subject": subject, "text": body, "tag": tag},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MailerError(f"{type(e).__name__}: {e}") from e
        if resp.status_code >= 400:
            raise MailerError(f"HTTP {resp.status_code}: {str(resp.text or '')[:200]}")


def deliver_pending(db, mailer: Optional[WebhookMailer], *, batch_size: int = 100, max_attempts: int = 3) -> dict[str, int]:
    """Drain one batch of pending emails. Without a mailer nothing is touched."""
    stats = {"sent": 0, "failed": 0, "retry": 0}
    if mailer is None:
        return stats

    rows = db.execute(
        select(EmailNotification)
        .where(EmailNotification.status == "pending")
        .order_by(EmailNotification.created_at, EmailNotification.id)
        .limit(batch_size)
    ).scalars().all()

    for row in rows:
        ident = db.get(Identity, row.recipient_id)
        row.attempts = int(row.attempts or 0) + 1
        if ident is None or not ident.email:
            row.status = "failed"
            row.error_message = "Recipient has no email address"
            stats["failed"] += 1
            continue
        try:
            mailer.send(to=ident.email, subject=row.subject, body=row.content, tag=row.type)
        except MailerError as e:
            row.error_message = str(e)[:1000]
            if row.attempts >= max_attempts:
                row.status = "failed"
                stats["failed"] += 1
            else:
                stats["retry"] += 1
            log.warning("email %s attempt %s failed: %s", row.id, row.attempts, row.error_message)
            continue
        row.status = "sent"
        row.sent_at = iso_utc_now()
        row.error_message = None
        stats["sent"] += 1

    db.commit()
    if rows:
        log.info("mail batch sent=%s failed=%s retry=%s", stats["sent"], stats["failed"], stats["retry"])
    return stats
