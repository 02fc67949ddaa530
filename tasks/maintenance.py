from __future__ import annotations

import logging

from actions.assessments import expire_overdue_results
from tasks import celery_app
from tasks._db import worker_session


log = logging.getLogger("tasks")


@celery_app.task
def expire_overdue_assessments():
    cfg, db = worker_session()
    try:
        if not cfg.ENABLE_EXPIRY_SWEEP:
            return {"expired": 0, "skipped": True}
        count = expire_overdue_results(db)
        db.commit()
        return {"expired": count}
    except Exception:
        db.rollback()
        log.exception("expiry sweep failed")
        raise
    finally:
        db.close()
