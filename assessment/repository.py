"""
Storage collaborator interface.

The engine never talks to a database directly; it reads and writes through an
AssessmentRepository. Implementations must make `upsert_answer` and
`finalize_attempt` atomic, guarded by a compare-and-set on the attempt's state
and version, and raise ConcurrentModification when the guard fails.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Collection, List, Optional, Set

from assessment.schemas import (
    AnswerRecord, AttemptRecord, BlueprintConfig, BlueprintRecord, BlueprintStatus,
    GradingOutcome, QuestionCreate, QuestionRecord, QuestionUpdate,
)


class AssessmentRepository(ABC):
    """CRUD for questions, blueprints, attempts and answers, keyed by opaque ids."""

    # ─── Questions ─────────────────────────────────────────────────────────────

    @abstractmethod
    def add_question(self, question: QuestionCreate) -> QuestionRecord:
        pass

    @abstractmethod
    def get_question(self, question_id: int) -> Optional[QuestionRecord]:
        pass

    @abstractmethod
    def list_questions(self, bank_id: int, active_only: bool = True) -> List[QuestionRecord]:
        pass

    @abstractmethod
    def update_question(self, question_id: int, changes: QuestionUpdate) -> Optional[QuestionRecord]:
        pass

    # ─── Blueprints ────────────────────────────────────────────────────────────

    @abstractmethod
    def add_blueprint(
        self,
        bank_id: int,
        title: str,
        config: BlueprintConfig,
        questions: List[QuestionRecord],
    ) -> BlueprintRecord:
        """Persist a DRAFT blueprint, snapshotting each question's key and weight in order."""

    @abstractmethod
    def get_blueprint(self, blueprint_id: int) -> Optional[BlueprintRecord]:
        pass

    @abstractmethod
    def list_blueprints(self, bank_id: int, statuses: Optional[Collection[BlueprintStatus]] = None) -> List[BlueprintRecord]:
        pass

    @abstractmethod
    def question_ids_in_use(self, bank_id: int, statuses: Collection[BlueprintStatus]) -> Set[int]:
        """Ids of questions referenced by this bank's blueprints in the given statuses."""

    @abstractmethod
    def transition_blueprint(self, blueprint_id: int, expected: BlueprintStatus, new: BlueprintStatus) -> bool:
        """Compare-and-set the blueprint status; False when it was not `expected`."""

    @abstractmethod
    def update_blueprint_config(self, blueprint_id: int, config: BlueprintConfig) -> bool:
        """Replace the configuration of a DRAFT blueprint; False when not DRAFT."""

    # ─── Attempts ──────────────────────────────────────────────────────────────

    @abstractmethod
    def get_attempt(self, attempt_id: int) -> Optional[AttemptRecord]:
        pass

    @abstractmethod
    def list_attempts(self, student_id: int, blueprint_id: int) -> List[AttemptRecord]:
        """This student's attempts at this blueprint, ordered by sequence."""

    @abstractmethod
    def add_attempt(self, student_id: int, blueprint_id: int, sequence: int, started_at: datetime) -> AttemptRecord:
        """Insert an IN_PROGRESS attempt; ConcurrentModification if the sequence is taken."""

    @abstractmethod
    def finalize_attempt(self, attempt_id: int, expected_version: int, outcome: GradingOutcome) -> AttemptRecord:
        """
        Atomically move an IN_PROGRESS attempt at `expected_version` to its terminal
        state, writing the score snapshot and per-answer grading in one go.
        """

    # ─── Answers ───────────────────────────────────────────────────────────────

    @abstractmethod
    def list_answers(self, attempt_id: int) -> List[AnswerRecord]:
        pass

    @abstractmethod
    def upsert_answer(
        self,
        attempt_id: int,
        expected_version: int,
        position: int,
        payload: Any,
        flagged: Optional[bool] = None,
        time_spent_seconds: Optional[int] = None,
    ) -> AnswerRecord:
        """
        Insert or replace the answer at `position` while the attempt is still
        IN_PROGRESS at `expected_version`, bumping the attempt version.
        `flagged` / `time_spent_seconds` left as None keep their previous values.
        """
