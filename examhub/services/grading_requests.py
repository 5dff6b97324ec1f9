"""
Student review requests on graded answers and their resolution by the exam's teacher.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from examhub.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from examhub.core.locks import attempt_key, key_lock
from examhub.models.orm import Answer, Exam, ExamAttempt, GradingRequest, Question, RequestStatus, User
from examhub.services.attempts import _lock_attempt, refresh_total, utcnow

logger = logging.getLogger(__name__)

DECISIONS = (RequestStatus.APPROVED.value, RequestStatus.REJECTED.value)


@dataclass
class ReviewItem:
    """A pending request with everything the teacher needs to decide on it."""
    request: GradingRequest
    answer: Answer
    question: Question
    exam: Exam
    student: User


def request_review(db: Session, answer_id: int, requester_id: int, comment: Optional[str] = None) -> GradingRequest:
    answer = db.get(Answer, answer_id)
    if answer is None:
        raise NotFound("Answer not found")
    attempt = db.get(ExamAttempt, answer.attempt_id)
    if attempt is None:
        raise NotFound("Attempt not found")
    if attempt.user_id != requester_id:
        raise Forbidden("You can only request a review of your own answers")
    req = GradingRequest(answer_id=answer_id, requested_at=utcnow(), status=RequestStatus.PENDING.value, comment=comment)
    db.add(req)
    db.commit()
    logger.info(f"Grading request {req.id} filed on answer {answer_id} by user {requester_id}")
    return req


def resolve_request(
    db: Session,
    request_id: int,
    resolver_id: int,
    decision: str,
    comment: Optional[str] = None,
    score: Optional[int] = None,
) -> GradingRequest:
    """Approve or reject a pending request.

    An approval that carries a score overwrites the answer's score and, for a
    completed attempt, recomputes the attempt total from all of its answers.
    """
    req = db.get(GradingRequest, request_id)
    if req is None:
        raise NotFound("Grading request not found")
    answer = db.get(Answer, req.answer_id)
    if answer is None:
        raise NotFound("Answer not found")

    with key_lock(attempt_key(answer.attempt_id)):
        attempt = _lock_attempt(db, answer.attempt_id)
        exam = db.get(Exam, attempt.exam_id)
        if exam is None:
            raise NotFound("Exam not found")
        if exam.user_id != resolver_id:
            raise Forbidden("You do not own this exam")
        if decision not in DECISIONS:
            raise InvalidInput("Invalid status")

        apply_score = decision == RequestStatus.APPROVED.value and score is not None
        question = None
        if apply_score:
            question = db.get(Question, answer.question_id)
            if question is None:
                raise NotFound("Question not found")
            if not isinstance(score, int) or isinstance(score, bool) or score < 0:
                raise InvalidInput("Invalid score")
            if score > question.points:
                raise InvalidInput("Score cannot exceed question points")

        res = db.execute(
            update(GradingRequest)
            .where(GradingRequest.id == request_id, GradingRequest.status == RequestStatus.PENDING.value)
            .values(status=decision, comment=comment, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise InvalidState("Grading request already resolved")

        if apply_score:
            answer = db.get(Answer, answer.id, populate_existing=True)
            answer.score = score
            answer.is_correct = score > 0
            answer.manually_graded = True
            refresh_total(db, attempt)
        db.commit()

    db.refresh(req)
    logger.info(f"Grading request {request_id} {decision} by teacher {resolver_id}" + (f" score={score}" if apply_score else ""))
    return req


def list_pending_for_teacher(db: Session, teacher_id: int) -> List[ReviewItem]:
    stmt = (
        select(GradingRequest, Answer, Question, Exam, User)
        .join(Answer, GradingRequest.answer_id == Answer.id)
        .join(ExamAttempt, Answer.attempt_id == ExamAttempt.id)
        .join(Exam, ExamAttempt.exam_id == Exam.id)
        .join(Question, Answer.question_id == Question.id)
        .join(User, ExamAttempt.user_id == User.id)
        .where(Exam.user_id == teacher_id, GradingRequest.status == RequestStatus.PENDING.value)
        .order_by(GradingRequest.requested_at, GradingRequest.id)
    )
    return [ReviewItem(*row) for row in db.execute(stmt).all()]


def list_for_student(db: Session, student_id: int) -> List[GradingRequest]:
    return list(db.scalars(
        select(GradingRequest)
        .join(Answer, GradingRequest.answer_id == Answer.id)
        .join(ExamAttempt, Answer.attempt_id == ExamAttempt.id)
        .where(ExamAttempt.user_id == student_id)
        .order_by(GradingRequest.requested_at.desc(), GradingRequest.id.desc())
    ))
