from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Session
from examhub.core.auth import TokenData, get_current_user, require_roles
from examhub.core.database import get_db
from examhub.models.orm import UserRole
from examhub.services import grading_requests as svc

router = APIRouter()

class ReviewIn(BaseModel):
    comment: Optional[str] = None

class ResolveIn(BaseModel):
    # approved | rejected, checked by the service
    status: str
    comment: Optional[str] = None
    score: Optional[int] = None

class GradingRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    answer_id: int
    requested_at: datetime
    status: str
    comment: Optional[str] = None
    resolved_at: Optional[datetime] = None

class PendingReviewOut(GradingRequestOut):
    answer: str
    answer_score: Optional[int] = None
    question_id: int
    question_text: str
    question_points: int
    exam_id: int
    exam_title: str
    student_id: int
    student_name: str

def _pending_view(item: svc.ReviewItem) -> PendingReviewOut:
    base = GradingRequestOut.model_validate(item.request).model_dump()
    return PendingReviewOut(
        **base,
        answer=item.answer.answer, answer_score=item.answer.score,
        question_id=item.question.id, question_text=item.question.text, question_points=item.question.points,
        exam_id=item.exam.id, exam_title=item.exam.title,
        student_id=item.student.id, student_name=item.student.name,
    )

@router.post("/answers/{answer_id}/grading-requests", response_model=GradingRequestOut, status_code=201)
def request_review(answer_id: int, payload: ReviewIn, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return svc.request_review(db, answer_id, user.user_id, payload.comment)

@router.get("/grading-requests")
def list_requests(user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    if user.role == UserRole.TEACHER.value:
        return [_pending_view(item).model_dump() for item in svc.list_pending_for_teacher(db, user.user_id)]
    return [GradingRequestOut.model_validate(r).model_dump() for r in svc.list_for_student(db, user.user_id)]

@router.put("/grading-requests/{request_id}", response_model=GradingRequestOut)
def resolve_request(request_id: int, payload: ResolveIn, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.resolve_request(db, request_id, user.user_id, payload.status, payload.comment, payload.score)
