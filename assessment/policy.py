"""
Attempt Policy Guard

Decides whether a student may start a new attempt, and derives the read-side
policies of a blueprint (result visibility, best-of / last-attempt scoring).
Everything here is side-effect free.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence

from assessment.errors import (
    DENIALS, AttemptInProgress, AttemptsExhausted, CooldownActive, NotAvailable, PolicyDenied,
)
from assessment.schemas import (
    AttemptRecord, AttemptState, BlueprintRecord, BlueprintStatus, PolicyDecision,
    ResultVisibility, ScoringPolicy, as_utc,
)

ALLOW = PolicyDecision(allowed=True)


def _deny(error: type, message: str, retry_at: Optional[datetime] = None) -> PolicyDecision:
    return PolicyDecision(allowed=False, reason=error.code, message=message, retry_at=retry_at)


def is_available(blueprint: BlueprintRecord, now: datetime) -> bool:
    if blueprint.status != BlueprintStatus.PUBLISHED:
        return False
    if blueprint.available_from and now < blueprint.available_from:
        return False
    if blueprint.available_until and now > blueprint.available_until:
        return False
    return True


def deadline_for(attempt: AttemptRecord, blueprint: BlueprintRecord) -> Optional[datetime]:
    if not blueprint.time_limit_minutes:
        return None
    return as_utc(attempt.started_at) + timedelta(minutes=blueprint.time_limit_minutes)


def is_overrun(attempt: AttemptRecord, blueprint: BlueprintRecord, now: datetime) -> bool:
    """An IN_PROGRESS attempt past its time limit is logically expired."""
    deadline = deadline_for(attempt, blueprint)
    return attempt.state == AttemptState.IN_PROGRESS and deadline is not None and now >= deadline


def can_start_attempt(
    student_id: int,
    blueprint: BlueprintRecord,
    history: Sequence[AttemptRecord],
    now: datetime,
) -> PolicyDecision:
    """
    Check, in order: availability, concurrent attempt, attempt limit, cooldown.

    `history` holds this student's attempts for this blueprint; other students'
    attempts are ignored.
    """
    own = [a for a in history if a.student_id == student_id and a.blueprint_id == blueprint.id]

    if not is_available(blueprint, now):
        return _deny(NotAvailable, "This exam is not available at the moment")

    in_progress = [a for a in own if a.state == AttemptState.IN_PROGRESS]
    if in_progress:
        return _deny(AttemptInProgress, f"Attempt {in_progress[0].id} is already in progress")

    terminal = [a for a in own if a.state.is_terminal]
    if blueprint.max_attempts is not None and len(terminal) >= blueprint.max_attempts:
        return _deny(AttemptsExhausted, f"All {blueprint.max_attempts} attempt(s) have been used")

    ended = [as_utc(a.ended_at) for a in terminal if a.ended_at is not None]
    if blueprint.cooldown_hours > 0 and ended:
        retry_at = max(ended) + timedelta(hours=blueprint.cooldown_hours)
        if now < retry_at:
            return _deny(CooldownActive, f"Next attempt available at {retry_at.isoformat()}", retry_at)

    return ALLOW


def raise_for_decision(decision: PolicyDecision, attempt_id: Optional[int] = None) -> None:
    """Turn a denial into its typed PolicyDenied exception."""
    if decision.allowed:
        return
    error = DENIALS.get(decision.reason, PolicyDenied)
    if error is AttemptInProgress:
        raise AttemptInProgress(decision.message, attempt_id=attempt_id)
    raise error(decision.message, retry_at=decision.retry_at)


# ─── Read-side policies ────────────────────────────────────────────────────────

def passed(score: float, blueprint: BlueprintRecord) -> bool:
    return score >= blueprint.pass_threshold


def results_visible(blueprint: BlueprintRecord, now: datetime) -> bool:
    """Whether per-question results may be shown to the student at `now`."""
    if blueprint.result_visibility == ResultVisibility.IMMEDIATE:
        return True
    if blueprint.result_visibility == ResultVisibility.SCHEDULED:
        return blueprint.results_available_at is not None and blueprint.results_available_at <= now
    return False


def effective_attempt(blueprint: BlueprintRecord, attempts: Iterable[AttemptRecord]) -> Optional[AttemptRecord]:
    """The terminal attempt that counts under the blueprint's scoring policy."""
    terminal = [a for a in attempts if a.state.is_terminal and a.score is not None]
    if not terminal:
        return None
    if blueprint.scoring_policy == ScoringPolicy.LAST:
        return max(terminal, key=lambda a: a.sequence)
    # Best score; the earlier attempt wins a tie.
    return max(terminal, key=lambda a: (a.score, -a.sequence))


def effective_score(blueprint: BlueprintRecord, attempts: Iterable[AttemptRecord]) -> Optional[float]:
    attempt = effective_attempt(blueprint, attempts)
    return attempt.score if attempt else None
