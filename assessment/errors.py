"""
Typed failures raised by the assessment engine.

Policy denials are expected outcomes for the student; state-integrity errors point
at a stale client or a lost race and are safe to retry; assembly errors are
configuration problems reported back to the teacher.
"""

from datetime import datetime
from typing import Optional


class AssessmentError(Exception):
    """Base class for every engine failure."""

    code = "assessment_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


# ─── Policy denials ────────────────────────────────────────────────────────────

class PolicyDenied(AssessmentError):
    """A new attempt may not be started."""

    code = "policy_denied"

    def __init__(self, message: Optional[str] = None, retry_at: Optional[datetime] = None):
        super().__init__(message)
        self.retry_at = retry_at


class NotAvailable(PolicyDenied):
    """This exam is not available."""
    code = "not_available"


class AttemptInProgress(PolicyDenied):
    """An attempt for this exam is already in progress."""
    code = "attempt_in_progress"

    def __init__(self, message: Optional[str] = None, attempt_id: Optional[int] = None):
        super().__init__(message)
        self.attempt_id = attempt_id


class AttemptsExhausted(PolicyDenied):
    """The attempt limit for this exam has been reached."""
    code = "attempts_exhausted"


class CooldownActive(PolicyDenied):
    """Wait for the interval between attempts to pass."""
    code = "cooldown_active"


DENIALS = {cls.code: cls for cls in (NotAvailable, AttemptInProgress, AttemptsExhausted, CooldownActive)}


# ─── State integrity (retryable) ──────────────────────────────────────────────

class StateIntegrityError(AssessmentError):
    code = "state_integrity"
    retryable = True


class AttemptNotFound(StateIntegrityError):
    """Attempt not found."""
    code = "attempt_not_found"


class AttemptAlreadyFinalized(StateIntegrityError):
    """This attempt has already been finalized."""
    code = "attempt_already_finalized"


class AttemptExpired(AttemptAlreadyFinalized):
    """The time limit for this attempt has run out; it was submitted automatically."""
    code = "attempt_expired"


class AttemptStillInProgress(StateIntegrityError):
    """This attempt is still in progress."""
    code = "attempt_not_finished"


class AnswerTargetNotFound(StateIntegrityError):
    """The answered question is not part of this exam."""
    code = "answer_target_not_found"


class ConcurrentModification(StateIntegrityError):
    """The attempt was modified concurrently; retry the request."""
    code = "concurrent_modification"


# ─── Assembly configuration ───────────────────────────────────────────────────

class AssemblyConfigurationError(AssessmentError):
    code = "assembly_configuration"


class InsufficientQuestions(AssemblyConfigurationError):
    """Not enough questions available to assemble the exam."""
    code = "insufficient_questions"

    def __init__(self, required: int, available: int, bucket: Optional[str] = None):
        where = f" with difficulty '{bucket}'" if bucket else ""
        super().__init__(f"{required} question(s){where} required but only {available} available")
        self.required = required
        self.available = available
        self.bucket = bucket


class InvalidPercentageDistribution(AssemblyConfigurationError):
    """Difficulty percentages must each be within 0-100 and add up to 100."""
    code = "invalid_percentage_distribution"


class InvalidAssemblyRequest(AssemblyConfigurationError):
    """The assembly request is invalid."""
    code = "invalid_assembly_request"


# ─── Blueprints & question bank ───────────────────────────────────────────────

class BlueprintError(AssessmentError):
    code = "blueprint_error"


class BlueprintNotFound(BlueprintError):
    """Exam blueprint not found."""
    code = "blueprint_not_found"


class QuestionNotFound(BlueprintError):
    """Question not found."""
    code = "question_not_found"


class InvalidBlueprintTransition(BlueprintError):
    """The exam cannot move to the requested status."""
    code = "invalid_blueprint_transition"


# ─── Storage ──────────────────────────────────────────────────────────────────

class StorageError(AssessmentError):
    """The storage backend failed; nothing was applied."""
    code = "storage_error"
    retryable = True
