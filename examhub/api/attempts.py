from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from examhub.core.auth import TokenData, get_current_user, require_roles
from examhub.core.database import get_db
from examhub.services import attempts as svc

router = APIRouter()

class AnswerIn(BaseModel):
    question_id: int
    answer: str = Field(max_length=20000)

class GradeIn(BaseModel):
    score: int
    is_correct: Optional[bool] = None

class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    attempt_id: int
    question_id: int
    answer: str
    is_correct: Optional[bool] = None
    score: Optional[int] = None
    manually_graded: bool = False

class StudentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    username: str
    name: str

class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    exam_id: int
    user_id: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    score: Optional[int] = None
    max_score: int
    time_spent: Optional[int] = None

class AttemptDetail(AttemptOut):
    answers: List[AnswerOut] = []

class AttemptWithStudent(AttemptOut):
    student: StudentSummary

@router.post("/exams/{exam_id}/attempts", response_model=AttemptOut)
def start_attempt(exam_id: int, response: Response, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    attempt, created = svc.start_attempt(db, exam_id, user.user_id)
    response.status_code = 201 if created else 200
    return attempt

@router.get("/exams/{exam_id}/attempts", response_model=List[AttemptWithStudent])
def list_exam_attempts(exam_id: int, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.list_exam_attempts(db, exam_id, user.user_id)

@router.get("/attempts/{attempt_id}", response_model=AttemptDetail)
def get_attempt(attempt_id: int, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return svc.get_attempt(db, attempt_id, user)

@router.post("/attempts/{attempt_id}/answers", response_model=AnswerOut)
def submit_answer(attempt_id: int, payload: AnswerIn, response: Response, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    answer, created = svc.submit_answer(db, attempt_id, payload.question_id, payload.answer, user.user_id)
    response.status_code = 201 if created else 200
    return answer

@router.put("/attempts/{attempt_id}/complete", response_model=AttemptOut)
def complete_attempt(attempt_id: int, user: TokenData = Depends(require_roles("student")), db: Session = Depends(get_db)):
    return svc.complete_attempt(db, attempt_id, user.user_id)

@router.put("/answers/{answer_id}/grade", response_model=AnswerOut)
def grade_answer(answer_id: int, payload: GradeIn, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.grade_answer(db, answer_id, user.user_id, payload.score, payload.is_correct)
