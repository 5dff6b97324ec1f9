"""
Exam-attempt lifecycle: start, answer upsert with auto-grading, completion and
manual grading.

Every mutation of an attempt (or of its answers) runs under the attempt's key
lock and re-reads the attempt row, so completion, answer saves and score
recomputation never interleave for the same attempt.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from examhub.core.auth import TokenData
from examhub.core.config import settings
from examhub.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from examhub.core.locks import attempt_key, key_lock, start_key
from examhub.models.orm import Answer, Exam, ExamAttempt, ExamStatus, Question, UserRole
from examhub.services.exams import get_exam_or_404, get_owned_exam
from examhub.services.grader import grade

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _in_progress(db: Session, exam_id: int, user_id: int) -> Optional[ExamAttempt]:
    return db.scalar(
        select(ExamAttempt)
        .where(ExamAttempt.exam_id == exam_id, ExamAttempt.user_id == user_id, ExamAttempt.completed_at.is_(None))
        .execution_options(populate_existing=True)
    )


def _lock_attempt(db: Session, attempt_id: int) -> ExamAttempt:
    attempt = db.get(ExamAttempt, attempt_id, with_for_update=True, populate_existing=True)
    if attempt is None:
        raise NotFound("Attempt not found")
    return attempt


def recompute_score(db: Session, attempt_id: int) -> int:
    """Fresh sum of answer scores; ungraded answers count as 0."""
    db.flush()
    return int(db.scalar(select(func.coalesce(func.sum(Answer.score), 0)).where(Answer.attempt_id == attempt_id)))


def refresh_total(db: Session, attempt: ExamAttempt) -> None:
    # in-progress attempts get their score at completion
    if attempt.completed_at is not None:
        attempt.score = recompute_score(db, attempt.id)


def start_attempt(db: Session, exam_id: int, user_id: int) -> Tuple[ExamAttempt, bool]:
    """Return (attempt, created). An in-progress attempt is returned unchanged."""
    exam = get_exam_or_404(db, exam_id)
    if exam.status != ExamStatus.ACTIVE.value:
        raise InvalidState("Exam is not active")

    with key_lock(start_key(exam_id, user_id)):
        existing = _in_progress(db, exam_id, user_id)
        if existing is not None:
            return existing, False

        max_score = db.scalar(select(func.coalesce(func.sum(Question.points), 0)).where(Question.exam_id == exam_id))
        attempt = ExamAttempt(exam_id=exam_id, user_id=user_id, started_at=utcnow(), max_score=int(max_score))
        db.add(attempt)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = _in_progress(db, exam_id, user_id)
            if existing is None:
                raise
            logger.warning(f"Concurrent start for exam {exam_id} user {user_id}, reusing attempt {existing.id}")
            return existing, False

    logger.info(f"Attempt {attempt.id} started: exam={exam_id} user={user_id} max_score={attempt.max_score}")
    return attempt, True


def submit_answer(db: Session, attempt_id: int, question_id: int, answer_text: str, user_id: int) -> Tuple[Answer, bool]:
    """Upsert the answer for (attempt, question) and auto-grade objective questions.

    Returns (answer, created). The attempt's score is left alone until completion.
    """
    with key_lock(attempt_key(attempt_id)):
        for tries in range(2):
            attempt = _lock_attempt(db, attempt_id)
            if attempt.user_id != user_id:
                raise Forbidden("This attempt belongs to another user")
            if attempt.completed_at is not None:
                raise InvalidState("Attempt already completed")
            question = db.get(Question, question_id)
            if question is None or question.exam_id != attempt.exam_id:
                raise NotFound("Question not found in this exam")

            answer = db.scalar(
                select(Answer)
                .where(Answer.attempt_id == attempt_id, Answer.question_id == question_id)
                .execution_options(populate_existing=True)
            )
            created = answer is None
            if created:
                answer = Answer(attempt_id=attempt_id, question_id=question_id, answer=answer_text, manually_graded=False)
                db.add(answer)
            else:
                if answer.manually_graded and settings.PROTECT_MANUAL_GRADES:
                    raise InvalidState("Answer was graded by a teacher and can no longer change")
                answer.answer = answer_text

            result = grade(question, answer.answer)
            if result is not None:
                answer.is_correct = result.is_correct
                answer.score = result.score
                answer.manually_graded = False

            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                if tries:
                    raise
                logger.warning(f"Answer for attempt {attempt_id} question {question_id} created concurrently, retrying")
                continue
            return answer, created


def finalize_attempt(db: Session, attempt: ExamAttempt) -> ExamAttempt:
    """Stamp completion, elapsed seconds and total score exactly once."""
    now = utcnow()
    score = recompute_score(db, attempt.id)
    time_spent = max(0, int((now - as_utc(attempt.started_at)).total_seconds()))
    res = db.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt.id, ExamAttempt.completed_at.is_(None))
        .values(completed_at=now, time_spent=time_spent, score=score)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        raise InvalidState("Attempt already completed")
    db.commit()
    db.refresh(attempt)
    logger.info(f"Attempt {attempt.id} completed: score={score}/{attempt.max_score} time_spent={time_spent}s")
    return attempt


def complete_attempt(db: Session, attempt_id: int, user_id: int) -> ExamAttempt:
    with key_lock(attempt_key(attempt_id)):
        attempt = _lock_attempt(db, attempt_id)
        if attempt.user_id != user_id:
            raise Forbidden("This attempt belongs to another user")
        if attempt.completed_at is not None:
            raise InvalidState("Attempt already completed")
        return finalize_attempt(db, attempt)


def get_attempt(db: Session, attempt_id: int, user: TokenData) -> ExamAttempt:
    """Attempt with answers, for its student or the exam's teacher."""
    attempt = db.get(ExamAttempt, attempt_id, options=[selectinload(ExamAttempt.answers)], populate_existing=True)
    if attempt is None:
        raise NotFound("Attempt not found")
    if attempt.user_id == user.user_id:
        return attempt
    exam = db.get(Exam, attempt.exam_id)
    if exam is None:
        raise NotFound("Exam not found")
    if user.role == UserRole.TEACHER.value and exam.user_id == user.user_id:
        return attempt
    raise Forbidden("You cannot view this attempt")


def list_exam_attempts(db: Session, exam_id: int, teacher_id: int) -> List[ExamAttempt]:
    get_owned_exam(db, exam_id, teacher_id)
    return list(db.scalars(
        select(ExamAttempt)
        .where(ExamAttempt.exam_id == exam_id)
        .options(selectinload(ExamAttempt.student))
        .order_by(ExamAttempt.started_at, ExamAttempt.id)
    ))


def grade_answer(db: Session, answer_id: int, teacher_id: int, score: int, is_correct: Optional[bool] = None) -> Answer:
    """Teacher sets an answer's score directly; a completed attempt's total follows."""
    answer = db.get(Answer, answer_id)
    if answer is None:
        raise NotFound("Answer not found")
    with key_lock(attempt_key(answer.attempt_id)):
        attempt = _lock_attempt(db, answer.attempt_id)
        exam = db.get(Exam, attempt.exam_id)
        if exam is None:
            raise NotFound("Exam not found")
        if exam.user_id != teacher_id:
            raise Forbidden("You do not own this exam")
        question = db.get(Question, answer.question_id)
        if question is None:
            raise NotFound("Question not found")
        if not isinstance(score, int) or isinstance(score, bool) or score < 0:
            raise InvalidInput("Invalid score")
        if score > question.points:
            raise InvalidInput("Score cannot exceed question points")

        answer = db.get(Answer, answer_id, populate_existing=True)
        answer.score = score
        answer.is_correct = bool(is_correct) if is_correct is not None else score > 0
        answer.manually_graded = True
        refresh_total(db, attempt)
        db.commit()
    logger.info(f"Answer {answer_id} graded {score}/{question.points} by teacher {teacher_id}")
    return answer


def list_results(db: Session, user: TokenData):
    """Students get their attempts; teachers get (exam, attempts) per owned exam."""
    if user.role == UserRole.STUDENT.value:
        return list(db.scalars(
            select(ExamAttempt)
            .where(ExamAttempt.user_id == user.user_id)
            .options(selectinload(ExamAttempt.exam))
            .order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc())
        ))
    exams = db.scalars(
        select(Exam)
        .where(Exam.user_id == user.user_id)
        .options(selectinload(Exam.attempts).selectinload(ExamAttempt.student))
        .order_by(Exam.created_at.desc(), Exam.id.desc())
    )
    return [(exam, sorted(exam.attempts, key=lambda a: a.id)) for exam in exams]
