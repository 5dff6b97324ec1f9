from dataclasses import dataclass
from typing import Optional
from examhub.models.orm import Question, QuestionType

OBJECTIVE_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value})

@dataclass(frozen=True)
class GradeResult:
    is_correct: bool
    score: int

def is_objective(question: Question) -> bool:
    return question.type in OBJECTIVE_TYPES

def grade(question: Question, submitted: str) -> Optional[GradeResult]:
    """Exact-match grading for objective questions; None means the answer needs a human grader."""
    if not is_objective(question):
        return None
    ok = submitted == question.correct_answer
    return GradeResult(is_correct=ok, score=question.points if ok else 0)
