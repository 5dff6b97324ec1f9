from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Literal, Optional, Union
from datetime import datetime
from sqlalchemy.orm import Session
from examhub.core.auth import TokenData, get_current_user, require_roles
from examhub.core.database import get_db
from examhub.models.orm import UserRole
from examhub.services import exams as svc

router = APIRouter()

ExamStatusIn = Literal["draft", "active", "archived"]
QuestionTypeIn = Literal["multiple_choice", "true_false", "essay"]

class ExamCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    duration: int = Field(gt=0)
    status: ExamStatusIn = "draft"
    file_url: Optional[str] = None
    is_public: bool = False

class ExamUpdate(BaseModel):
    title: Optional[str] = None
    subject: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    status: Optional[ExamStatusIn] = None
    file_url: Optional[str] = None
    is_public: Optional[bool] = None

class ExamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    user_id: int
    title: str
    subject: str
    description: Optional[str] = None
    duration: int
    status: str
    share_code: str
    file_url: Optional[str] = None
    is_public: bool = False
    created_at: Optional[datetime] = None

class OptionIn(BaseModel):
    id: str = Field(min_length=1)
    text: str = ""

class QuestionCreate(BaseModel):
    type: QuestionTypeIn
    text: str = Field(min_length=1)
    points: int = Field(default=1, gt=0)
    order: int = 0
    options: Optional[List[OptionIn]] = None
    correct_answer: Optional[Union[str, List[str]]] = None

class QuestionUpdate(BaseModel):
    type: Optional[QuestionTypeIn] = None
    text: Optional[str] = Field(default=None, min_length=1)
    points: Optional[int] = None
    order: Optional[int] = None
    options: Optional[List[OptionIn]] = None
    correct_answer: Optional[Union[str, List[str]]] = None

class QuestionPublic(BaseModel):
    """What a student sees: never the correct answer."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    exam_id: int
    type: str
    text: str
    points: int
    order: int
    options: Optional[List[dict]] = None

class QuestionOut(QuestionPublic):
    correct_answer: Optional[Any] = None

def _question_view(q, user: TokenData) -> dict:
    model = QuestionOut if user.role == UserRole.TEACHER.value else QuestionPublic
    return model.model_validate(q).model_dump()

@router.get("/exams", response_model=List[ExamOut])
def list_exams(user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return svc.list_exams(db, user)

@router.post("/exams", response_model=ExamOut, status_code=201)
def create_exam(payload: ExamCreate, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.create_exam(db, user.user_id, payload.model_dump())

@router.get("/exams/code/{share_code}", response_model=ExamOut)
def get_exam_by_code(share_code: str, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return svc.get_exam_by_share_code(db, share_code)

@router.get("/exams/{exam_id}", response_model=ExamOut)
def get_exam(exam_id: int, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return svc.get_visible_exam(db, exam_id, user)

@router.put("/exams/{exam_id}", response_model=ExamOut)
def update_exam(exam_id: int, payload: ExamUpdate, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.update_exam(db, exam_id, user.user_id, payload.model_dump(exclude_unset=True))

@router.delete("/exams/{exam_id}", status_code=204)
def delete_exam(exam_id: int, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    svc.delete_exam(db, exam_id, user.user_id)
    return Response(status_code=204)

# ========== Questions ==========

@router.get("/exams/{exam_id}/questions")
def list_questions(exam_id: int, user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    return [_question_view(q, user) for q in svc.list_questions(db, exam_id, user)]

@router.post("/exams/{exam_id}/questions", response_model=QuestionOut, status_code=201)
def create_question(exam_id: int, payload: QuestionCreate, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.create_question(db, exam_id, user.user_id, payload.model_dump())

@router.put("/questions/{question_id}", response_model=QuestionOut)
def update_question(question_id: int, payload: QuestionUpdate, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    return svc.update_question(db, question_id, user.user_id, payload.model_dump(exclude_unset=True))

@router.delete("/questions/{question_id}", status_code=204)
def delete_question(question_id: int, user: TokenData = Depends(require_roles("teacher")), db: Session = Depends(get_db)):
    svc.delete_question(db, question_id, user.user_id)
    return Response(status_code=204)
