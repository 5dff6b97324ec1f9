from datetime import timedelta

import pytest

from conftest import build_exam
from examhub.jobs import expiry_job
from examhub.models.orm import ExamAttempt
from examhub.services import attempts as attempt_svc


def _age(db, attempt, seconds):
    db.query(ExamAttempt).filter_by(id=attempt.id).update({"started_at": attempt_svc.utcnow() - timedelta(seconds=seconds)})
    db.commit()


def test_sweep_completes_only_expired_attempts(db, teacher, student, other_student):
    exam, mc, *_ = build_exam(db, teacher, duration=10)
    stale, _ = attempt_svc.start_attempt(db, exam.id, student.id)
    attempt_svc.submit_answer(db, stale.id, mc.id, "b", student.id)
    fresh, _ = attempt_svc.start_attempt(db, exam.id, other_student.id)
    _age(db, stale, 10 * 60 + 121)
    _age(db, fresh, 10 * 60 + 30)

    assert expiry_job.complete_expired(db, grace_seconds=120) == [stale.id]
    db.expire_all()
    done = db.get(ExamAttempt, stale.id)
    assert done.completed_at is not None and done.score == 2 and done.time_spent >= 721
    assert db.get(ExamAttempt, fresh.id).completed_at is None


def test_sweep_skips_already_completed(db, teacher, student):
    exam, *_ = build_exam(db, teacher, duration=1)
    attempt, _ = attempt_svc.start_attempt(db, exam.id, student.id)
    _age(db, attempt, 3600)
    attempt_svc.complete_attempt(db, attempt.id, student.id)
    assert expiry_job.complete_expired(db, grace_seconds=0) == []


def test_sweep_job_reschedules(monkeypatch, session_factory):
    scheduled = []

    class FakeQueue:
        def enqueue_in(self, delay, func):
            scheduled.append((delay, func))

    import examhub.jobs.queue as queue_mod
    monkeypatch.setattr(queue_mod, "queue", FakeQueue())
    monkeypatch.setattr(expiry_job, "SessionLocal", session_factory)

    assert expiry_job.sweep_expired_attempts() == {"completed": []}
    assert scheduled == [(timedelta(seconds=expiry_job.settings.EXPIRY_SWEEP_INTERVAL_SECONDS), expiry_job.sweep_expired_attempts)]


def test_sweep_continues_past_a_vanished_attempt(db, teacher, student, monkeypatch):
    exam, *_ = build_exam(db, teacher, duration=1)
    attempt, _ = attempt_svc.start_attempt(db, exam.id, student.id)
    _age(db, attempt, 3600)
    monkeypatch.setattr(expiry_job, "expired_attempt_ids", lambda db, now=None, grace_seconds=None: [999999, attempt.id])

    assert expiry_job.complete_expired(db) == [attempt.id]
    db.expire_all()
    assert db.get(ExamAttempt, attempt.id).completed_at is not None


def test_sweep_reschedules_even_when_it_fails(monkeypatch, session_factory):
    scheduled = []

    class FakeQueue:
        def enqueue_in(self, delay, func):
            scheduled.append(func)

    def broken(db, now=None, grace_seconds=None):
        raise RuntimeError("database went away")

    import examhub.jobs.queue as queue_mod
    monkeypatch.setattr(queue_mod, "queue", FakeQueue())
    monkeypatch.setattr(expiry_job, "SessionLocal", session_factory)
    monkeypatch.setattr(expiry_job, "complete_expired", broken)

    with pytest.raises(RuntimeError):
        expiry_job.sweep_expired_attempts()
    assert scheduled == [expiry_job.sweep_expired_attempts]
