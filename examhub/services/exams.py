"""
Exam authoring: exams, share codes, status transitions and questions.
"""
import logging
import secrets
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from examhub.core.auth import TokenData
from examhub.core.config import settings
from examhub.core.errors import Forbidden, InvalidInput, InvalidState, NotFound
from examhub.models.orm import Exam, ExamStatus, Question, QuestionType, UserRole

logger = logging.getLogger(__name__)

# No 0/O or 1/I
SHARE_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
MAX_SHARE_CODE_TRIES = 10

STATUS_TRANSITIONS = {
    ExamStatus.DRAFT.value: {ExamStatus.ACTIVE.value},
    ExamStatus.ACTIVE.value: {ExamStatus.ARCHIVED.value},
    ExamStatus.ARCHIVED.value: {ExamStatus.ACTIVE.value},
}

EXAM_FIELDS = ("title", "subject", "description", "duration", "file_url", "is_public")
QUESTION_FIELDS = ("type", "text", "points", "order", "options", "correct_answer")


def generate_share_code(length: Optional[int] = None) -> str:
    return "".join(secrets.choice(SHARE_CODE_ALPHABET) for _ in range(length or settings.SHARE_CODE_LENGTH))


def _unused_share_code(db: Session) -> str:
    for _ in range(MAX_SHARE_CODE_TRIES):
        code = generate_share_code()
        if db.scalar(select(Exam.id).where(Exam.share_code == code)) is None:
            return code
    raise InvalidState("Could not allocate a unique share code")


def check_transition(current: str, target: str) -> None:
    if target not in STATUS_TRANSITIONS:
        raise InvalidInput(f"Unknown exam status '{target}'")
    if target != current and target not in STATUS_TRANSITIONS[current]:
        raise InvalidState(f"Exam cannot move from {current} to {target}")


def get_exam_or_404(db: Session, exam_id: int) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam not found")
    return exam


def get_owned_exam(db: Session, exam_id: int, teacher_id: int) -> Exam:
    exam = get_exam_or_404(db, exam_id)
    if exam.user_id != teacher_id:
        raise Forbidden("You do not own this exam")
    return exam


def get_visible_exam(db: Session, exam_id: int, user: TokenData) -> Exam:
    """Teachers see their own exams, students see active ones."""
    exam = get_exam_or_404(db, exam_id)
    if user.role == UserRole.TEACHER.value and exam.user_id != user.user_id:
        raise Forbidden("You do not own this exam")
    if user.role == UserRole.STUDENT.value and exam.status != ExamStatus.ACTIVE.value:
        raise Forbidden("Exam is not active")
    return exam


def create_exam(db: Session, teacher_id: int, data: Dict[str, Any]) -> Exam:
    status = data.get("status") or ExamStatus.DRAFT.value
    if status not in STATUS_TRANSITIONS:
        raise InvalidInput(f"Unknown exam status '{status}'")
    if data.get("duration") is not None and data["duration"] <= 0:
        raise InvalidInput("Duration must be positive")
    exam = Exam(
        user_id=teacher_id,
        status=status,
        share_code=_unused_share_code(db),
        **{k: data[k] for k in EXAM_FIELDS if data.get(k) is not None},
    )
    db.add(exam)
    db.commit()
    logger.info(f"Exam {exam.id} created by teacher {teacher_id} with code {exam.share_code}")
    return exam


def update_exam(db: Session, exam_id: int, teacher_id: int, changes: Dict[str, Any]) -> Exam:
    exam = get_owned_exam(db, exam_id, teacher_id)
    if "duration" in changes and (changes["duration"] is None or changes["duration"] <= 0):
        raise InvalidInput("Duration must be positive")
    for field in ("title", "subject"):
        if field in changes and not changes[field]:
            raise InvalidInput(f"{field} cannot be empty")
    if "is_public" in changes and changes["is_public"] is None:
        raise InvalidInput("is_public cannot be null")
    if changes.get("status") is not None:
        check_transition(exam.status, changes["status"])
        if changes["status"] != exam.status:
            logger.info(f"Exam {exam.id} status {exam.status} -> {changes['status']}")
        exam.status = changes["status"]
    for field in EXAM_FIELDS:
        if field in changes:
            setattr(exam, field, changes[field])
    db.commit()
    return exam


def delete_exam(db: Session, exam_id: int, teacher_id: int) -> None:
    exam = get_owned_exam(db, exam_id, teacher_id)
    db.delete(exam)
    db.commit()
    logger.info(f"Exam {exam_id} deleted by teacher {teacher_id}")


def list_exams(db: Session, user: TokenData) -> List[Exam]:
    stmt = select(Exam).order_by(Exam.created_at.desc(), Exam.id.desc())
    if user.role == UserRole.TEACHER.value:
        stmt = stmt.where(Exam.user_id == user.user_id)
    else:
        stmt = stmt.where(Exam.status == ExamStatus.ACTIVE.value)
    return list(db.scalars(stmt))


def get_exam_by_share_code(db: Session, code: str) -> Exam:
    code = (code or "").strip().upper()
    if not code:
        raise InvalidInput("Share code is required")
    exam = db.scalar(select(Exam).where(Exam.share_code == code))
    if exam is None:
        raise NotFound("No exam uses this share code")
    if exam.status != ExamStatus.ACTIVE.value:
        raise Forbidden("This exam is not available right now")
    return exam


# ========== Questions ==========

def validate_question(qtype: str, points: int, options: Optional[list], correct_answer: Any) -> None:
    if qtype not in {t.value for t in QuestionType}:
        raise InvalidInput(f"Unknown question type '{qtype}'")
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise InvalidInput("Points must be a positive integer")

    if qtype == QuestionType.MULTIPLE_CHOICE.value:
        if not options or len(options) < 2:
            raise InvalidInput("Multiple-choice questions need at least two options")
        ids = [str(o.get("id", "")) for o in options]
        if any(not i for i in ids) or len(set(ids)) != len(ids):
            raise InvalidInput("Option ids must be present and unique")
        if correct_answer not in ids:
            raise InvalidInput("Correct answer must be one of the option ids")
    elif options:
        raise InvalidInput("Only multiple-choice questions take options")

    if qtype == QuestionType.TRUE_FALSE.value and correct_answer not in ("true", "false"):
        raise InvalidInput("True/false correct answer must be 'true' or 'false'")

    if qtype == QuestionType.ESSAY.value:
        if correct_answer is not None and (
            not isinstance(correct_answer, list) or not all(isinstance(a, str) for a in correct_answer)
        ):
            raise InvalidInput("Essay correct answers must be a list of strings")


def _normalize_options(options: Optional[list]) -> Optional[list]:
    if options is None:
        return None
    return [{"id": str(o["id"]), "text": o.get("text", "")} for o in options]


def create_question(db: Session, exam_id: int, teacher_id: int, data: Dict[str, Any]) -> Question:
    exam = get_owned_exam(db, exam_id, teacher_id)
    points = data.get("points", 1)
    options = _normalize_options(data.get("options"))
    validate_question(data["type"], points, options, data.get("correct_answer"))
    question = Question(
        exam_id=exam.id,
        type=data["type"],
        text=data["text"],
        points=points,
        order=data.get("order") or 0,
        options=options,
        correct_answer=data.get("correct_answer"),
    )
    db.add(question)
    db.commit()
    return question


def list_questions(db: Session, exam_id: int, user: TokenData) -> List[Question]:
    exam = get_visible_exam(db, exam_id, user)
    return list(db.scalars(select(Question).where(Question.exam_id == exam.id).order_by(Question.order, Question.id)))


def _owned_question(db: Session, question_id: int, teacher_id: int) -> Question:
    question = db.get(Question, question_id)
    if question is None:
        raise NotFound("Question not found")
    get_owned_exam(db, question.exam_id, teacher_id)
    return question


def update_question(db: Session, question_id: int, teacher_id: int, changes: Dict[str, Any]) -> Question:
    question = _owned_question(db, question_id, teacher_id)
    for field in ("type", "text", "points"):
        if field in changes and changes[field] is None:
            raise InvalidInput(f"{field} cannot be null")
    if "text" in changes and not changes["text"].strip():
        raise InvalidInput("text cannot be empty")
    merged = {f: getattr(question, f) for f in QUESTION_FIELDS}
    merged.update({k: v for k, v in changes.items() if k in QUESTION_FIELDS})
    if "options" in changes:
        merged["options"] = _normalize_options(changes["options"])
    validate_question(merged["type"], merged["points"], merged["options"], merged["correct_answer"])
    for field in QUESTION_FIELDS:
        setattr(question, field, merged[field])
    if question.order is None:
        question.order = 0
    db.commit()
    return question


def delete_question(db: Session, question_id: int, teacher_id: int) -> None:
    question = _owned_question(db, question_id, teacher_id)
    db.delete(question)
    db.commit()
