"""
Attempt State Machine

Drives one student's run through a blueprint:

    IN_PROGRESS ──submit──▶ SUBMITTED
         │
         └──time limit──▶ EXPIRED

Both terminal states are final. Expiry is lazy: every read or write re-checks the
time limit and finalizes an overrun attempt (from its last autosaved answers)
before doing anything else. Expiry is not a separate scoring path; it is an
implicit submission that lands in EXPIRED.

Writes are serialized per attempt with an optimistic compare-and-set on the
attempt's (state, version), so a late autosave can never land after scoring.
"""

import logging
import os
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from assessment import policy
from assessment.errors import (
    AnswerTargetNotFound, AttemptAlreadyFinalized, AttemptExpired, AttemptNotFound,
    AttemptStillInProgress, BlueprintNotFound, ConcurrentModification,
)
from assessment.evaluator import evaluate_question
from assessment.events import AttemptSubmitted, EventPublisher, publish_safely
from assessment.repository import AssessmentRepository
from assessment.schemas import (
    AnswerRecord, AttemptRecord, AttemptResult, AttemptState, AttemptView,
    BlueprintRecord, GradedAnswer, GradingOutcome, PresentedQuestion, QuestionResult,
    as_utc, utcnow,
)

log = logging.getLogger("assessment.attempts")

CAS_RETRIES = int(os.getenv("ATTEMPT_CAS_RETRIES") or 3)


# ─── Pure grading ──────────────────────────────────────────────────────────────

def grade_attempt(
    attempt: AttemptRecord,
    blueprint: BlueprintRecord,
    answers: List[AnswerRecord],
    state: AttemptState,
    now: datetime,
) -> GradingOutcome:
    """
    Score every blueprint question against the attempt's current answers.

    A missing answer is graded as blank. score = weighted partial credit / total
    weight * 100 (0 for an empty blueprint).
    """
    by_position = {a.position: a for a in answers}
    total_weighted = 0.0
    total_weight = 0.0
    correct_count = 0
    graded: List[GradedAnswer] = []

    for question in blueprint.questions:
        answer = by_position.get(question.position)
        result = evaluate_question(question, answer.payload if answer else None)
        total_weighted += result.partial_score * question.weight
        total_weight += question.weight
        if result.correct:
            correct_count += 1
        graded.append(GradedAnswer(
            position=question.position,
            answer_id=answer.id if answer else None,
            correct=result.correct,
            partial_score=result.partial_score,
        ))

    score = (total_weighted / total_weight) * 100 if total_weight > 0 else 0.0
    started = as_utc(attempt.started_at)
    return GradingOutcome(
        state=state,
        ended_at=now,
        elapsed_seconds=max(0, int((now - started).total_seconds())),
        score=score,
        correct_count=correct_count,
        total_questions=len(blueprint.questions),
        graded=graded,
    )


# ─── Serving-time shuffle ──────────────────────────────────────────────────────

def _presentation_rng(attempt: AttemptRecord, salt: str = "") -> random.Random:
    # Seeded per attempt so every re-read shows the same order.
    return random.Random(f"attempt:{attempt.id}:{attempt.sequence}:{salt}")


def presentation_order(attempt: AttemptRecord, blueprint: BlueprintRecord) -> List[int]:
    positions = [q.position for q in blueprint.questions]
    if blueprint.shuffle_questions:
        _presentation_rng(attempt).shuffle(positions)
    return positions


def _presented_content(attempt: AttemptRecord, blueprint: BlueprintRecord, position: int, content: Dict[str, Any]) -> Dict[str, Any]:
    content = dict(content or {})
    options = content.get("options")
    if blueprint.shuffle_options and isinstance(options, list):
        options = list(options)
        _presentation_rng(attempt, f"options:{position}").shuffle(options)
        content["options"] = options
    return content


# ─── Service ───────────────────────────────────────────────────────────────────

class AttemptService:
    """Create, autosave, submit and read attempts through a storage collaborator."""

    def __init__(self, repository: AssessmentRepository, publisher: Optional[EventPublisher] = None):
        self.repository = repository
        self.publisher = publisher

    # ── loading ───────────────────────────────────────────────────────────────

    def _blueprint(self, blueprint_id: int) -> BlueprintRecord:
        blueprint = self.repository.get_blueprint(blueprint_id)
        if blueprint is None:
            raise BlueprintNotFound(f"Exam blueprint {blueprint_id} not found")
        return blueprint

    def _owned_attempt(self, attempt_id: int, student_id: Optional[int]) -> AttemptRecord:
        attempt = self.repository.get_attempt(attempt_id)
        # Someone else's attempt is reported exactly like a missing one.
        if attempt is None or (student_id is not None and attempt.student_id != student_id):
            raise AttemptNotFound(f"Attempt {attempt_id} not found")
        return attempt

    # ── lazy expiry ───────────────────────────────────────────────────────────

    def _finalize(self, attempt: AttemptRecord, blueprint: BlueprintRecord, state: AttemptState, now: datetime) -> AttemptRecord:
        answers = self.repository.list_answers(attempt.id)
        outcome = grade_attempt(attempt, blueprint, answers, state, now)
        record = self.repository.finalize_attempt(attempt.id, attempt.version, outcome)
        passed = policy.passed(outcome.score, blueprint)
        log.info(
            f"[{'EXPIRE' if state == AttemptState.EXPIRED else 'SUBMIT'}] attempt={attempt.id} "
            f"student={attempt.student_id} blueprint={blueprint.id} score={outcome.score:.2f} "
            f"correct={outcome.correct_count}/{outcome.total_questions} passed={passed}"
        )
        publish_safely(self.publisher, AttemptSubmitted(attempt_id=attempt.id, score=outcome.score, passed=passed))
        return record

    def _settle(self, attempt: AttemptRecord, blueprint: BlueprintRecord, now: datetime) -> AttemptRecord:
        """Finalize an overrun attempt as EXPIRED; return the current record otherwise."""
        if not policy.is_overrun(attempt, blueprint, now):
            return attempt
        try:
            return self._finalize(attempt, blueprint, AttemptState.EXPIRED, now)
        except ConcurrentModification:
            # Someone else touched it first; whatever they wrote wins.
            return self._owned_attempt(attempt.id, None)

    # ── operations ────────────────────────────────────────────────────────────

    def create_attempt(self, student_id: int, blueprint_id: int, now: Optional[datetime] = None) -> AttemptRecord:
        """
        Start a new attempt if the policy guard allows it.

        Overrun attempts in the student's history are expired first, so a
        forgotten tab never blocks the next attempt.
        """
        now = as_utc(now) or utcnow()
        blueprint = self._blueprint(blueprint_id)
        history = [
            self._settle(a, blueprint, now)
            for a in self.repository.list_attempts(student_id, blueprint_id)
        ]

        decision = policy.can_start_attempt(student_id, blueprint, history, now)
        if not decision.allowed:
            open_attempt = next((a.id for a in history if a.state == AttemptState.IN_PROGRESS), None)
            log.info(f"[START] Denied student={student_id} blueprint={blueprint_id}: {decision.reason}")
            policy.raise_for_decision(decision, attempt_id=open_attempt)

        attempt = self.repository.add_attempt(student_id, blueprint_id, len(history) + 1, now)
        log.info(f"[START] attempt={attempt.id} student={student_id} blueprint={blueprint_id} sequence={attempt.sequence}")
        return attempt

    def save_answer(
        self,
        attempt_id: int,
        student_id: Optional[int],
        position: int,
        payload: Any,
        flagged: Optional[bool] = None,
        time_spent_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AnswerRecord:
        """
        Autosave the raw answer for one blueprint position.

        Nothing is evaluated here; answers can change freely until the attempt
        ends.

        Raises:
            AttemptNotFound: unknown attempt (or another student's)
            AttemptAlreadyFinalized: the attempt is SUBMITTED or EXPIRED
            AttemptExpired: the time limit just ran out; the attempt was finalized
            AnswerTargetNotFound: the position is not part of the blueprint
        """
        now = as_utc(now) or utcnow()
        for _ in range(CAS_RETRIES):
            attempt = self._owned_attempt(attempt_id, student_id)
            if attempt.state.is_terminal:
                raise AttemptAlreadyFinalized(f"Attempt {attempt_id} is already {attempt.state.value}")

            blueprint = self._blueprint(attempt.blueprint_id)
            settled = self._settle(attempt, blueprint, now)
            if settled.state == AttemptState.EXPIRED:
                raise AttemptExpired(f"Attempt {attempt_id} ran out of time and was submitted automatically")
            if settled.state.is_terminal:
                raise AttemptAlreadyFinalized(f"Attempt {attempt_id} is already {settled.state.value}")

            if blueprint.question_at(position) is None:
                raise AnswerTargetNotFound(f"Question position {position} is not part of this exam")

            try:
                return self.repository.upsert_answer(
                    attempt_id, attempt.version, position, payload,
                    flagged=flagged, time_spent_seconds=time_spent_seconds,
                )
            except ConcurrentModification:
                log.info(f"[AUTOSAVE] attempt={attempt_id} version {attempt.version} is stale, retrying")
        raise ConcurrentModification(f"Attempt {attempt_id} kept changing while saving; retry")

    def submit_attempt(self, attempt_id: int, student_id: Optional[int], now: Optional[datetime] = None) -> AttemptResult:
        """
        Finalize the attempt: evaluate every question, aggregate the weighted
        score and write the snapshot atomically.

        An attempt past its time limit is finalized as EXPIRED instead, and the
        EXPIRED result is returned. Submitting a terminal attempt again raises
        AttemptAlreadyFinalized and never re-scores.
        """
        now = as_utc(now) or utcnow()
        for _ in range(CAS_RETRIES):
            attempt = self._owned_attempt(attempt_id, student_id)
            if attempt.state.is_terminal:
                raise AttemptAlreadyFinalized(f"Attempt {attempt_id} is already {attempt.state.value}")

            blueprint = self._blueprint(attempt.blueprint_id)
            state = AttemptState.EXPIRED if policy.is_overrun(attempt, blueprint, now) else AttemptState.SUBMITTED
            try:
                record = self._finalize(attempt, blueprint, state, now)
            except ConcurrentModification:
                log.info(f"[SUBMIT] attempt={attempt_id} version {attempt.version} is stale, retrying")
                continue
            return self._result(record, blueprint, now)
        raise ConcurrentModification(f"Attempt {attempt_id} kept changing while submitting; retry")

    # ── reads ─────────────────────────────────────────────────────────────────

    def get_attempt(self, attempt_id: int, student_id: Optional[int] = None, now: Optional[datetime] = None) -> AttemptRecord:
        """The attempt as it stands now; an overrun attempt is expired on read."""
        now = as_utc(now) or utcnow()
        attempt = self._owned_attempt(attempt_id, student_id)
        if attempt.state.is_terminal:
            return attempt
        return self._settle(attempt, self._blueprint(attempt.blueprint_id), now)

    def present_attempt(self, attempt_id: int, student_id: Optional[int] = None, now: Optional[datetime] = None) -> AttemptView:
        """Questions in presentation order with saved answers; never exposes keys."""
        now = as_utc(now) or utcnow()
        attempt = self.get_attempt(attempt_id, student_id, now)
        blueprint = self._blueprint(attempt.blueprint_id)
        answers = {a.position: a for a in self.repository.list_answers(attempt.id)}

        questions = []
        for number, position in enumerate(presentation_order(attempt, blueprint), start=1):
            q = blueprint.question_at(position)
            saved = answers.get(position)
            questions.append(PresentedQuestion(
                number=number,
                position=position,
                type=q.type,
                prompt=q.prompt,
                content=_presented_content(attempt, blueprint, position, q.content),
                saved_answer=saved.payload if saved else None,
                flagged=saved.flagged if saved else False,
            ))

        deadline = policy.deadline_for(attempt, blueprint)
        remaining = None
        if deadline is not None:
            remaining = 0 if attempt.state.is_terminal else max(0, int((deadline - now).total_seconds()))
        return AttemptView(
            attempt_id=attempt.id,
            blueprint_id=blueprint.id,
            title=blueprint.title,
            state=attempt.state,
            sequence=attempt.sequence,
            started_at=attempt.started_at,
            deadline=deadline,
            remaining_seconds=remaining,
            questions=questions,
        )

    def get_result(self, attempt_id: int, student_id: Optional[int] = None, now: Optional[datetime] = None) -> AttemptResult:
        now = as_utc(now) or utcnow()
        attempt = self.get_attempt(attempt_id, student_id, now)
        if not attempt.state.is_terminal:
            raise AttemptStillInProgress(f"Attempt {attempt_id} is still in progress")
        return self._result(attempt, self._blueprint(attempt.blueprint_id), now)

    def effective_score(self, student_id: int, blueprint_id: int, now: Optional[datetime] = None) -> Optional[float]:
        """The student's grade for a blueprint under its best-of / last-attempt policy."""
        now = as_utc(now) or utcnow()
        blueprint = self._blueprint(blueprint_id)
        attempts = [self._settle(a, blueprint, now) for a in self.repository.list_attempts(student_id, blueprint_id)]
        return policy.effective_score(blueprint, attempts)

    def _result(self, attempt: AttemptRecord, blueprint: BlueprintRecord, now: datetime) -> AttemptResult:
        visible = policy.results_visible(blueprint, now)
        breakdown = None
        if visible:
            answers = {a.position: a for a in self.repository.list_answers(attempt.id)}
            breakdown = []
            for q in blueprint.questions:
                answer = answers.get(q.position)
                breakdown.append(QuestionResult(
                    position=q.position,
                    question_id=q.question_id,
                    type=q.type,
                    weight=q.weight,
                    answered=answer is not None,
                    correct=bool(answer and answer.correct),
                    partial_score=(answer.partial_score or 0.0) if answer else 0.0,
                    submitted=answer.payload if answer else None,
                    answer_key=q.answer_key.model_dump(),
                ))

        score = attempt.score or 0.0
        return AttemptResult(
            attempt_id=attempt.id,
            blueprint_id=blueprint.id,
            sequence=attempt.sequence,
            state=attempt.state,
            score=score,
            passed=policy.passed(score, blueprint),
            pass_threshold=blueprint.pass_threshold,
            correct_count=attempt.correct_count or 0,
            total_questions=attempt.total_questions or len(blueprint.questions),
            elapsed_seconds=attempt.elapsed_seconds or 0,
            auto_submitted=attempt.auto_submitted,
            details_visible=visible,
            breakdown=breakdown,
        )
