"""
Exam attempt router (student-facing).
Start attempts, view questions, autosave answers, submit, and view results.
Every write on an attempt runs under that attempt's lock.
"""

from typing import Any, Callable, ContextManager, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from assessment.attempts import AttemptService
from assessment.schemas import AnswerRecord, AttemptRecord, AttemptResult, AttemptView
from routers.deps import Identity, get_attempt_lock, get_attempt_service, require_student

router = APIRouter(tags=["exam-attempts"])


# ─── Schemas ───────────────────────────────────────────────────────────────────

class SaveAnswerRequest(BaseModel):
    payload: Any = None  # raw answer, shape depends on the question type
    flagged: Optional[bool] = None
    time_spent_seconds: Optional[int] = Field(None, ge=0)


class EffectiveScoreResponse(BaseModel):
    blueprint_id: int
    score: Optional[float] = None


# ─── Routes ────────────────────────────────────────────────────────────────────

@router.post("/blueprints/{blueprint_id}/attempts", response_model=AttemptRecord, status_code=201)
def start_attempt(
    blueprint_id: int,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
):
    return service.create_attempt(student.id, blueprint_id)


@router.get("/blueprints/{blueprint_id}/score", response_model=EffectiveScoreResponse)
def effective_score(
    blueprint_id: int,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
):
    """The student's grade for this exam under its best-of / last-attempt policy."""
    return EffectiveScoreResponse(blueprint_id=blueprint_id, score=service.effective_score(student.id, blueprint_id))


@router.get("/attempts/{attempt_id}", response_model=AttemptView)
def get_attempt(
    attempt_id: int,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
    lock: Callable[[int], ContextManager] = Depends(get_attempt_lock),
):
    """Questions in presentation order with saved answers. Expires the attempt if time is up."""
    with lock(attempt_id):
        return service.present_attempt(attempt_id, student.id)


@router.put("/attempts/{attempt_id}/answers/{position}", response_model=AnswerRecord)
def save_answer(
    attempt_id: int,
    position: int,
    request: SaveAnswerRequest,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
    lock: Callable[[int], ContextManager] = Depends(get_attempt_lock),
):
    """Autosave one answer. Nothing is graded until the attempt is submitted."""
    with lock(attempt_id):
        return service.save_answer(
            attempt_id, student.id, position, request.payload,
            flagged=request.flagged, time_spent_seconds=request.time_spent_seconds,
        )


@router.post("/attempts/{attempt_id}/submit", response_model=AttemptResult)
def submit_attempt(
    attempt_id: int,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
    lock: Callable[[int], ContextManager] = Depends(get_attempt_lock),
):
    with lock(attempt_id):
        return service.submit_attempt(attempt_id, student.id)


@router.get("/attempts/{attempt_id}/result", response_model=AttemptResult)
def get_result(
    attempt_id: int,
    student: Identity = Depends(require_student),
    service: AttemptService = Depends(get_attempt_service),
    lock: Callable[[int], ContextManager] = Depends(get_attempt_lock),
):
    with lock(attempt_id):
        return service.get_result(attempt_id, student.id)
