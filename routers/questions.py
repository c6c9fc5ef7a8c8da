"""
Question bank router (teacher-facing).
Create, list, update and deactivate bank questions with typed answer keys.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from assessment.blueprints import QuestionBank
from assessment.schemas import QuestionCreate, QuestionRecord, QuestionUpdate
from routers.deps import Identity, get_question_bank, require_teacher

router = APIRouter(prefix="/questions", tags=["question-bank"])


@router.post("", response_model=QuestionRecord, status_code=201)
def create_question(
    request: QuestionCreate,
    teacher: Identity = Depends(require_teacher),
    bank: QuestionBank = Depends(get_question_bank),
):
    """Add a question; the answer key is validated against its type."""
    return bank.create(request)


@router.get("/bank/{bank_id}", response_model=List[QuestionRecord])
def list_questions(
    bank_id: int,
    include_inactive: bool = Query(False),
    teacher: Identity = Depends(require_teacher),
    bank: QuestionBank = Depends(get_question_bank),
):
    return bank.list(bank_id, active_only=not include_inactive)


@router.get("/{question_id}", response_model=QuestionRecord)
def get_question(question_id: int, teacher: Identity = Depends(require_teacher), bank: QuestionBank = Depends(get_question_bank)):
    return bank.get(question_id)


@router.patch("/{question_id}", response_model=QuestionRecord)
def update_question(
    question_id: int,
    request: QuestionUpdate,
    teacher: Identity = Depends(require_teacher),
    bank: QuestionBank = Depends(get_question_bank),
):
    """Update a question. Already assembled exams keep their snapshot."""
    return bank.update(question_id, request)


@router.delete("/{question_id}", response_model=QuestionRecord)
def deactivate_question(question_id: int, teacher: Identity = Depends(require_teacher), bank: QuestionBank = Depends(get_question_bank)):
    """Deactivate (soft-delete) a question so it is no longer assembled."""
    return bank.deactivate(question_id)
