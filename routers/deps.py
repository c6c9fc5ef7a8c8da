"""
Shared router dependencies: bearer-token identity, service wiring and
translation of engine errors into HTTP responses.
"""

from typing import Callable, ContextManager, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from rq import Queue
from sqlalchemy.orm import Session

from assessment.attempts import AttemptService
from assessment.blueprints import BlueprintService, QuestionBank
from assessment.errors import (
    AnswerTargetNotFound, AssemblyConfigurationError, AssessmentError, AttemptAlreadyFinalized,
    AttemptInProgress, AttemptNotFound, AttemptStillInProgress, AttemptsExhausted,
    BlueprintNotFound, ConcurrentModification, CooldownActive, InvalidBlueprintTransition,
    NotAvailable, QuestionNotFound, StorageError,
)
from assessment.events import EXAM_EVENTS_QUEUE, EventPublisher, RqEventPublisher
from auth.security import decode_token
from database.database import get_db
from database.redis_client import attempt_lock, get_redis
from database.repository import SqlAlchemyRepository

security_scheme = HTTPBearer()


# ─── Identity ──────────────────────────────────────────────────────────────────

class Identity(BaseModel):
    id: int
    role: str


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security_scheme)) -> Identity:
    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    try:
        return Identity(id=int(payload.get("sub")), role=str(payload.get("role")))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def require_student(user: Identity = Depends(get_current_user)) -> Identity:
    if user.role != "student":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Student access required")
    return user


def require_teacher(user: Identity = Depends(get_current_user)) -> Identity:
    if user.role != "teacher":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Teacher access required")
    return user


# ─── Services ──────────────────────────────────────────────────────────────────

def get_repository(db: Session = Depends(get_db)) -> SqlAlchemyRepository:
    return SqlAlchemyRepository(db)


def get_event_publisher() -> Optional[EventPublisher]:
    return RqEventPublisher(Queue(EXAM_EVENTS_QUEUE, connection=get_redis()))


def get_attempt_lock() -> Callable[[int], ContextManager]:
    return attempt_lock


def get_attempt_service(
    repository: SqlAlchemyRepository = Depends(get_repository),
    publisher: Optional[EventPublisher] = Depends(get_event_publisher),
) -> AttemptService:
    return AttemptService(repository, publisher)


def get_blueprint_service(repository: SqlAlchemyRepository = Depends(get_repository)) -> BlueprintService:
    return BlueprintService(repository)


def get_question_bank(repository: SqlAlchemyRepository = Depends(get_repository)) -> QuestionBank:
    return QuestionBank(repository)


# ─── Error translation ─────────────────────────────────────────────────────────

_STATUS_CODES = [
    (NotAvailable, status.HTTP_403_FORBIDDEN),
    (AttemptsExhausted, status.HTTP_403_FORBIDDEN),
    (AttemptInProgress, status.HTTP_409_CONFLICT),
    (CooldownActive, status.HTTP_409_CONFLICT),
    (AttemptNotFound, status.HTTP_404_NOT_FOUND),
    (AnswerTargetNotFound, status.HTTP_404_NOT_FOUND),
    (BlueprintNotFound, status.HTTP_404_NOT_FOUND),
    (QuestionNotFound, status.HTTP_404_NOT_FOUND),
    (AttemptAlreadyFinalized, status.HTTP_409_CONFLICT),
    (AttemptStillInProgress, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (InvalidBlueprintTransition, status.HTTP_409_CONFLICT),
    (AssemblyConfigurationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def to_http_exception(error: AssessmentError) -> HTTPException:
    status_code = next(
        (code for cls, code in _STATUS_CODES if isinstance(error, cls)),
        status.HTTP_400_BAD_REQUEST,
    )
    detail = {"code": error.code, "message": error.message}
    retry_at = getattr(error, "retry_at", None)
    if retry_at is not None:
        detail["retry_at"] = retry_at.isoformat()
    attempt_id = getattr(error, "attempt_id", None)
    if attempt_id is not None:
        detail["attempt_id"] = attempt_id
    return HTTPException(status_code=status_code, detail=detail)
