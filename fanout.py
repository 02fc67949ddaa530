"""
Change-notification fan-out.

`store` emits a ChangeEvent after every flushed insert/update/delete. Handlers
registered for the event's (table, kind) run synchronously in the same session,
each inside its own SAVEPOINT: a handler that raises is rolled back to the
savepoint and logged, and the triggering mutation is left untouched.

Emission is at-least-once. Applying the same transition twice produces the
notification twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import insert, select

from models import (
    Activity,
    EmailNotification,
    Notification,
    Profile,
    SelectionProcess,
)
from utils import ROLE_HR, iso_utc_now, new_uuid, parse_datetime_maybe


log = logging.getLogger("fanout")

EXPIRY_WINDOW = timedelta(days=30)
COMPLETED_EVALUATION_STATUSES = ("passed", "failed")

_settings = {"batch_size": 500, "broadcast_max": 0}


def configure(*, batch_size: int = 500, broadcast_max: int = 0) -> None:
    _settings["batch_size"] = max(1, int(batch_size))
    _settings["broadcast_max"] = max(0, int(broadcast_max))


@dataclass
class ChangeEvent:
    table: str
    kind: str  # insert | update | delete
    row: Any
    old: dict[str, Any] = field(default_factory=dict)
    columns: frozenset = frozenset()

    def changed(self, column: str) -> bool:
        """The column was written and its value differs from the stored one."""
        if self.kind == "insert":
            return True
        return column in self.columns and self.old.get(column) != getattr(self.row, column, None)

    def written(self, column: str) -> bool:
        return self.kind == "insert" or column in self.columns


Handler = Callable[[Any, ChangeEvent], None]

_HANDLERS: dict[tuple[str, str], list[Handler]] = {}


def on(table: str, *kinds: str):
    def deco(fn: Handler) -> Handler:
        for kind in kinds:
            _HANDLERS.setdefault((table, kind), []).append(fn)
        return fn

    return deco


def handlers_for(table: str, kind: str) -> list[Handler]:
    return list(_HANDLERS.get((table, kind), []))


def emit(db, event: ChangeEvent) -> int:
    """Run every handler for the event; returns how many failed."""
    failures = 0
    for handler in handlers_for(event.table, event.kind):
        try:
            with db.begin_nested():
                handler(db, event)
        except Exception:
            failures += 1
            log.exception(
                "fanout handler %s failed table=%s kind=%s id=%s",
                getattr(handler, "__name__", "handler"),
                event.table,
                event.kind,
                getattr(event.row, "id", ""),
            )
    return failures


# ---- row builders ------------------------------------------------------------


def notify(db, user_id: str, type_: str, title: str, content: str, related_id: Optional[str] = None) -> Notification:
    n = Notification(
        id=new_uuid(),
        user_id=user_id,
        type=type_,
        title=title,
        content=content,
        read=False,
        created_at=iso_utc_now(),
        related_id=related_id,
    )
    db.add(n)
    db.flush()
    return n


def queue_email(db, recipient_id: str, type_: str, subject: str, content: str) -> EmailNotification:
    e = EmailNotification(
        id=new_uuid(),
        type=type_,
        recipient_id=recipient_id,
        subject=subject,
        content=content,
        status="pending",
        attempts=0,
        created_at=iso_utc_now(),
    )
    db.add(e)
    db.flush()
    return e


def _fmt_date(value: Any) -> str:
    dt = parse_datetime_maybe(value)
    return dt.strftime("%d/%m/%Y") if dt else str(value or "")


def _fmt_datetime(value: Any) -> str:
    dt = parse_datetime_maybe(value)
    return dt.strftime("%d/%m/%Y %H:%M") if dt else str(value or "")


def expires_soon(expiry: Any, *, now: Optional[datetime] = None) -> bool:
    """expiry is in (now, now + 30 days]."""
    dt = parse_datetime_maybe(expiry)
    if dt is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now < dt <= now + EXPIRY_WINDOW


# ---- selection processes -----------------------------------------------------

PROCESS_STATUS_MESSAGES = {
    "in_progress": (
        "Your selection process has started",
        "Selection process started",
        "Your selection process has started. Please keep an eye out for the next stages.",
    ),
    "completed": (
        "Your selection process has finished",
        "Selection process completed",
        "Congratulations! Your selection process has finished successfully.",
    ),
    "rejected": (
        "We are sorry, your selection process has been rejected",
        "An update about your application",
        "We regret to inform you that we will not continue with your selection process. "
        "Thank you for your interest and good luck with your job search.",
    ),
}
PROCESS_STATUS_DEFAULT = (
    "Your selection process has been updated",
    "Selection process update",
    "There has been an update to your selection process. Please sign in to the platform for details.",
)


@on("selection_processes", "update")
def process_status_notice(db, event: ChangeEvent) -> None:
    if "status" not in event.columns:
        return
    proc = event.row
    content, subject, body = PROCESS_STATUS_MESSAGES.get(proc.status, PROCESS_STATUS_DEFAULT)
    notify(db, proc.candidate_id, "process_update", "Selection process update", content, proc.id)
    queue_email(db, proc.candidate_id, "process_update", subject, body)


@on("selection_processes", "update")
def assessment_assigned_notice(db, event: ChangeEvent) -> None:
    if "required_assessments" not in event.columns:
        return
    new = list(event.row.required_assessments or [])
    old = list(event.old.get("required_assessments") or [])
    if not new or new == old:
        return
    proc = event.row
    notify(
        db,
        proc.candidate_id,
        "assessment_assigned",
        "New skill assessment",
        "A new skill assessment has been assigned to you.",
        proc.id,
    )
    queue_email(
        db,
        proc.candidate_id,
        "assessment_invitation",
        "Pending skill assessment",
        "A new skill assessment has been assigned to you. Please sign in to the platform to complete it.",
    )


# ---- evaluations -------------------------------------------------------------


@on("candidate_evaluations", "update")
def evaluation_complete_notice(db, event: ChangeEvent) -> None:
    ev = event.row
    if "status" not in event.columns or ev.status not in COMPLETED_EVALUATION_STATUSES:
        return
    stage = ev.stage
    candidate_id = None
    if stage is not None and stage.process is not None:
        candidate_id = stage.process.candidate_id
    if not candidate_id:
        log.warning("evaluation %s has no resolvable candidate", ev.id)
        return
    notify(
        db,
        candidate_id,
        "evaluation_complete",
        "Evaluation completed",
        "An evaluation in your selection process has been completed.",
        stage.process_id,
    )
    queue_email(
        db,
        candidate_id,
        "evaluation_complete",
        "Evaluation completed",
        "An evaluation in your selection process has been completed. Please sign in to the platform to see the results.",
    )


# ---- interviews --------------------------------------------------------------


@on("interviews", "insert")
def interview_scheduled_notice(db, event: ChangeEvent) -> None:
    iv = event.row
    proc = db.get(SelectionProcess, iv.process_id)
    if proc is None:
        return
    when = _fmt_datetime(iv.scheduled_date)
    notify(
        db,
        proc.candidate_id,
        "interview_scheduled",
        "Interview scheduled",
        f"An interview has been scheduled for {when}",
        iv.id,
    )
    where = iv.location or iv.meeting_link or ""
    body = f"An interview has been scheduled for {when} ({iv.duration_minutes} minutes)."
    if where:
        body += f" Location: {where}."
    queue_email(db, proc.candidate_id, "interview_scheduled", "Interview scheduled", body)


# ---- documents ---------------------------------------------------------------

DOCUMENT_STATUS_TITLES = {"approved": "Document approved", "rejected": "Document rejected"}


@on("documents", "update")
def document_status_notice(db, event: ChangeEvent) -> None:
    if not event.changed("status"):
        return
    doc = event.row
    title = DOCUMENT_STATUS_TITLES.get(doc.status, "Document status updated")
    outcome = doc.status if doc.status in DOCUMENT_STATUS_TITLES else "updated"
    notify(
        db,
        doc.user_id,
        "document_status",
        title,
        f'The document "{doc.title}" has been {outcome}',
        doc.id,
    )


@on("documents", "insert", "update")
def document_expiry_notice(db, event: ChangeEvent) -> None:
    doc = event.row
    if not expires_soon(doc.expiry_date):
        return
    notify(
        db,
        doc.user_id,
        "document_expiry",
        "Document about to expire",
        f'The document "{doc.title}" expires on {_fmt_date(doc.expiry_date)}',
        doc.id,
    )


# ---- job offers --------------------------------------------------------------


@on("job_offers", "insert")
def new_job_offer_broadcast(db, event: ChangeEvent) -> None:
    """One notification per non-hr profile, inserted in keyset-paginated batches."""
    offer = event.row
    batch_size = _settings["batch_size"]
    cap = _settings["broadcast_max"]
    now = iso_utc_now()
    sent = 0
    last_id = ""
    while True:
        stmt = (
            select(Profile.id)
            .where(Profile.role != ROLE_HR, Profile.id > last_id)
            .order_by(Profile.id)
            .limit(batch_size)
        )
        ids = list(db.execute(stmt).scalars())
        if not ids:
            break
        if cap and sent + len(ids) > cap:
            ids = ids[: cap - sent]
        if ids:
            db.execute(
                insert(Notification),
                [
                    {
                        "id": new_uuid(),
                        "user_id": uid,
                        "type": "new_job_offer",
                        "title": "New job offer",
                        "content": f"A new job offer has been published: {offer.title}",
                        "read": False,
                        "created_at": now,
                        "related_id": offer.id,
                    }
                    for uid in ids
                ],
            )
            sent += len(ids)
            last_id = ids[-1]
        if cap and sent >= cap:
            log.warning("job offer %s broadcast stopped at cap=%s", offer.id, cap)
            break
    log.info("job offer %s broadcast to %s profiles", offer.id, sent)


def _offer_activity(db, type_: str, description: str, user_id: str, offer_id: Optional[str]) -> None:
    db.add(
        Activity(
            id=new_uuid(),
            type=type_,
            description=description,
            created_at=iso_utc_now(),
            user_id=user_id,
            offer_id=offer_id,
        )
    )
    db.flush()


@on("job_offers", "insert")
def job_offer_created_activity(db, event: ChangeEvent) -> None:
    o = event.row
    _offer_activity(db, "create", f"New job offer created: {o.title}", o.created_by, o.id)


@on("job_offers", "update")
def job_offer_modified_activity(db, event: ChangeEvent) -> None:
    o = event.row
    _offer_activity(db, "modify", f"Job offer modified: {o.title}", o.created_by, o.id)


@on("job_offers", "delete")
def job_offer_deleted_activity(db, event: ChangeEvent) -> None:
    # The offer row is gone; the activity keeps only its title.
    _offer_activity(
        db,
        "delete",
        f"Job offer deleted: {event.old.get('title') or ''}",
        event.old.get("created_by") or "",
        None,
    )


# ---- applications and messages -----------------------------------------------


@on("applications", "update")
def application_status_notice(db, event: ChangeEvent) -> None:
    if not event.changed("status"):
        return
    app_row = event.row
    notify(
        db,
        app_row.user_id,
        "application_status",
        "Application status updated",
        f"Your application has been {app_row.status}",
        app_row.job_offer_id,
    )


@on("messages", "insert")
def new_message_notice(db, event: ChangeEvent) -> None:
    msg = event.row
    sender = db.get(Profile, msg.sender_id)
    name = sender.display_name if sender is not None else ""
    notify(
        db,
        msg.receiver_id,
        "message",
        "New message",
        f"Message from {name}".rstrip(),
        msg.application_id,
    )
