from sqlalchemy import (
    BigInteger, Integer, String, Text, Boolean, ForeignKey, JSON, DateTime,
    UniqueConstraint, Index, CheckConstraint, text, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from typing import Optional, List, Any
import enum
from examhub.core.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer, "sqlite")

class UserRole(str, enum.Enum):
    TEACHER = "teacher"
    STUDENT = "student"

class ExamStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"

class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"

class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

# ========== Accounts ==========

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.STUDENT.value)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

# ========== Authoring ==========

class Exam(Base):
    __tablename__ = "exams"
    __table_args__ = (
        Index("idx_exams_user", "user_id"),
        Index("idx_exams_status", "status"),
        CheckConstraint("duration > 0", name="ck_exam_duration"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    user_id: Mapped[int] = mapped_column(IdType, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ExamStatus.DRAFT.value)
    share_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    file_url: Mapped[Optional[str]] = mapped_column(String(500))
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    questions: Mapped[List["Question"]] = relationship(
        back_populates="exam", cascade="all, delete-orphan", order_by=lambda: [Question.order, Question.id]
    )
    attempts: Mapped[List["ExamAttempt"]] = relationship(back_populates="exam", cascade="all, delete-orphan")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        Index("idx_questions_exam", "exam_id", "order"),
        CheckConstraint("points > 0", name="ck_question_points"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    exam_id: Mapped[int] = mapped_column(IdType, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    options: Mapped[Optional[List[dict]]] = mapped_column(JSON)
    # str for multiple_choice / true_false, list of acceptable strings for essay
    correct_answer: Mapped[Optional[Any]] = mapped_column(JSON)

    exam: Mapped["Exam"] = relationship(back_populates="questions")

# ========== Delivery ==========

class ExamAttempt(Base):
    __tablename__ = "exam_attempts"
    __table_args__ = (
        Index("idx_attempts_exam", "exam_id"),
        Index("idx_attempts_user", "user_id"),
        Index(
            "uq_attempt_in_progress", "exam_id", "user_id", unique=True,
            sqlite_where=text("completed_at IS NULL"),
            postgresql_where=text("completed_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    exam_id: Mapped[int] = mapped_column(IdType, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(IdType, ForeignKey("users.id"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    score: Mapped[Optional[int]] = mapped_column(Integer)
    max_score: Mapped[int] = mapped_column(Integer, nullable=False)
    time_spent: Mapped[Optional[int]] = mapped_column(Integer)

    exam: Mapped["Exam"] = relationship(back_populates="attempts")
    student: Mapped["User"] = relationship()
    answers: Mapped[List["Answer"]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan", order_by="Answer.id"
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        Index("idx_answers_attempt", "attempt_id"),
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_per_question"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    attempt_id: Mapped[int] = mapped_column(IdType, ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False)
    question_id: Mapped[int] = mapped_column(IdType, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[Optional[bool]] = mapped_column(Boolean)
    score: Mapped[Optional[int]] = mapped_column(Integer)
    manually_graded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    attempt: Mapped["ExamAttempt"] = relationship(back_populates="answers")
    question: Mapped["Question"] = relationship()
    grading_requests: Mapped[List["GradingRequest"]] = relationship(
        back_populates="answer", cascade="all, delete-orphan"
    )

class GradingRequest(Base):
    __tablename__ = "grading_requests"
    __table_args__ = (
        Index("idx_gr_answer", "answer_id"),
        Index("idx_gr_status", "status"),
    )

    id: Mapped[int] = mapped_column(IdType, primary_key=True)
    answer_id: Mapped[int] = mapped_column(IdType, ForeignKey("answers.id", ondelete="CASCADE"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RequestStatus.PENDING.value)
    comment: Mapped[Optional[str]] = mapped_column(Text)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    answer: Mapped["Answer"] = relationship(back_populates="grading_requests")
