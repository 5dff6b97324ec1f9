from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List
from sqlalchemy.orm import Session
from examhub.core.auth import TokenData, get_current_user
from examhub.core.database import get_db
from examhub.models.orm import UserRole
from examhub.services.attempts import list_results
from examhub.api.attempts import AttemptOut, AttemptWithStudent
from examhub.api.exams import ExamOut

router = APIRouter()

class StudentResult(AttemptOut):
    exam: ExamOut

class ExamResults(BaseModel):
    exam: ExamOut
    attempts: List[AttemptWithStudent]

@router.get("/results")
def results(user: TokenData = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = list_results(db, user)
    if user.role == UserRole.STUDENT.value:
        return [StudentResult.model_validate(a).model_dump() for a in rows]
    return [ExamResults(exam=ExamOut.model_validate(exam), attempts=[AttemptWithStudent.model_validate(a) for a in attempts]).model_dump()
            for exam, attempts in rows]
