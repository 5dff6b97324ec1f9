"""
Background completion of attempts abandoned past their exam's deadline.
"""
import logging
from datetime import timedelta
from typing import List, Optional

from rq import get_current_job
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examhub.core.config import settings
from examhub.core.database import SessionLocal
from examhub.core.errors import ExamHubError, InvalidState
from examhub.core.locks import attempt_key, key_lock
from examhub.models.orm import Exam, ExamAttempt
from examhub.services.attempts import _lock_attempt, as_utc, finalize_attempt, utcnow

logger = logging.getLogger(__name__)


def expired_attempt_ids(db: Session, now=None, grace_seconds: Optional[int] = None) -> List[int]:
    now = now or utcnow()
    grace = timedelta(seconds=settings.ATTEMPT_GRACE_SECONDS if grace_seconds is None else grace_seconds)
    rows = db.execute(
        select(ExamAttempt.id, ExamAttempt.started_at, Exam.duration)
        .join(Exam, ExamAttempt.exam_id == Exam.id)
        .where(ExamAttempt.completed_at.is_(None))
    ).all()
    return [aid for aid, started_at, duration in rows
            if as_utc(started_at) + timedelta(minutes=duration) + grace <= now]


def complete_expired(db: Session, now=None, grace_seconds: Optional[int] = None) -> List[int]:
    """Finalize every expired in-progress attempt; returns the ids completed by this call.

    A failure on one attempt is logged and the sweep moves on to the next.
    """
    done = []
    for attempt_id in expired_attempt_ids(db, now, grace_seconds):
        try:
            with key_lock(attempt_key(attempt_id)):
                attempt = _lock_attempt(db, attempt_id)
                if attempt.completed_at is not None:
                    db.rollback()
                    continue
                finalize_attempt(db, attempt)
        except InvalidState:
            logger.warning(f"Attempt {attempt_id} was completed concurrently, skipping")
            continue
        except (ExamHubError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Expiry sweep could not complete attempt {attempt_id}: {e}")
            continue
        done.append(attempt_id)
    return done


def sweep_expired_attempts(reschedule: bool = True) -> dict:
    job = get_current_job()
    db = SessionLocal()
    try:
        done = complete_expired(db)
        if done:
            logger.info(f"Expiry sweep completed {len(done)} attempt(s): {done}")
        if job is not None:
            job.meta.update({"completed": done}); job.save_meta()
    finally:
        db.close()
        if reschedule:
            from examhub.jobs.queue import queue
            queue.enqueue_in(timedelta(seconds=settings.EXPIRY_SWEEP_INTERVAL_SECONDS), sweep_expired_attempts)
    return {"completed": done}
