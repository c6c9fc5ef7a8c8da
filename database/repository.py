"""
SQLAlchemy implementation of the assessment storage collaborator.

Every attempt write is one transaction guarded by a compare-and-set on
(state = in_progress, version): the guarded UPDATE either bumps the version or
matches no row, in which case the transaction is rolled back and
ConcurrentModification is raised.
"""

import enum
import logging
from datetime import datetime
from typing import Any, Collection, Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from assessment.errors import ConcurrentModification, StorageError
from assessment.repository import AssessmentRepository
from assessment.schemas import (
    AnswerRecord, AttemptRecord, AttemptState, BlueprintConfig, BlueprintRecord,
    BlueprintStatus, GradingOutcome, QuestionCreate, QuestionRecord, QuestionUpdate,
)
from database.models import AttemptAnswer, BlueprintQuestion, ExamAttempt, ExamBlueprint, PoolQuestion

log = logging.getLogger("database.repository")


def _column_values(model: BaseModel, **dump_kwargs) -> Dict[str, Any]:
    """model_dump() with enums flattened to their string values for String columns."""
    values = model.model_dump(**dump_kwargs)
    return {k: (v.value if isinstance(v, enum.Enum) else v) for k, v in values.items()}


class SqlAlchemyRepository(AssessmentRepository):
    def __init__(self, db: Session):
        self.db = db

    # ─── Transaction helpers ───────────────────────────────────────────────────

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error(f"[DB] {what} failed: {e}")
            raise StorageError(f"{what} failed; nothing was saved") from e

    def _guarded_bump(self, attempt_id: int, expected_version: int, values: Optional[Dict[str, Any]] = None) -> None:
        """Compare-and-set on the attempt row; rolls back and raises on a lost race."""
        try:
            updated = (
                self.db.query(ExamAttempt)
                .filter(
                    ExamAttempt.id == attempt_id,
                    ExamAttempt.state == AttemptState.IN_PROGRESS.value,
                    ExamAttempt.version == expected_version,
                )
                .update({**(values or {}), ExamAttempt.version: expected_version + 1}, synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Updating attempt {attempt_id} failed") from e
        if updated != 1:
            self.db.rollback()
            raise ConcurrentModification(f"Attempt {attempt_id} is no longer at version {expected_version}")

    # ─── Questions ─────────────────────────────────────────────────────────────

    def add_question(self, question: QuestionCreate) -> QuestionRecord:
        row = PoolQuestion(
            bank_id=question.bank_id,
            type=question.type.value,
            prompt=question.prompt,
            weight=question.weight,
            difficulty=question.difficulty.value,
            answer_key=question.answer_key.model_dump(),
            content=question.content,
            active=question.active,
        )
        self.db.add(row)
        self._commit("Adding question")
        self.db.refresh(row)
        return QuestionRecord.model_validate(row)

    def get_question(self, question_id: int) -> Optional[QuestionRecord]:
        row = self.db.query(PoolQuestion).filter(PoolQuestion.id == question_id).first()
        return QuestionRecord.model_validate(row) if row else None

    def list_questions(self, bank_id: int, active_only: bool = True) -> List[QuestionRecord]:
        query = self.db.query(PoolQuestion).filter(PoolQuestion.bank_id == bank_id)
        if active_only:
            query = query.filter(PoolQuestion.active.is_(True))
        return [QuestionRecord.model_validate(r) for r in query.order_by(PoolQuestion.id).all()]

    def update_question(self, question_id: int, changes: QuestionUpdate) -> Optional[QuestionRecord]:
        row = self.db.query(PoolQuestion).filter(PoolQuestion.id == question_id).first()
        if row is None:
            return None
        values = _column_values(changes, exclude_unset=True)
        if changes.answer_key is not None:
            values["answer_key"] = changes.answer_key.model_dump()
            values["type"] = changes.answer_key.type
        for field, value in values.items():
            if value is not None:
                setattr(row, field, value)
        self._commit(f"Updating question {question_id}")
        self.db.refresh(row)
        return QuestionRecord.model_validate(row)

    # ─── Blueprints ────────────────────────────────────────────────────────────

    def add_blueprint(
        self,
        bank_id: int,
        title: str,
        config: BlueprintConfig,
        questions: List[QuestionRecord],
    ) -> BlueprintRecord:
        row = ExamBlueprint(
            bank_id=bank_id,
            title=title,
            status=BlueprintStatus.DRAFT.value,
            **_column_values(config),
        )
        for position, q in enumerate(questions, start=1):
            row.questions.append(BlueprintQuestion(
                position=position,
                question_id=q.id,
                type=q.type.value,
                prompt=q.prompt,
                weight=q.weight,
                difficulty=q.difficulty.value,
                answer_key=q.answer_key.model_dump(),
                content=q.content,
            ))
        self.db.add(row)
        self._commit("Saving exam blueprint")
        self.db.refresh(row)
        return BlueprintRecord.model_validate(row)

    def get_blueprint(self, blueprint_id: int) -> Optional[BlueprintRecord]:
        row = self.db.query(ExamBlueprint).filter(ExamBlueprint.id == blueprint_id).first()
        return BlueprintRecord.model_validate(row) if row else None

    def list_blueprints(self, bank_id: int, statuses: Optional[Collection[BlueprintStatus]] = None) -> List[BlueprintRecord]:
        query = self.db.query(ExamBlueprint).filter(ExamBlueprint.bank_id == bank_id)
        if statuses:
            query = query.filter(ExamBlueprint.status.in_([BlueprintStatus(s).value for s in statuses]))
        return [BlueprintRecord.model_validate(r) for r in query.order_by(ExamBlueprint.id).all()]

    def question_ids_in_use(self, bank_id: int, statuses: Collection[BlueprintStatus]) -> Set[int]:
        rows = (
            self.db.query(BlueprintQuestion.question_id)
            .join(ExamBlueprint, BlueprintQuestion.blueprint_id == ExamBlueprint.id)
            .filter(
                ExamBlueprint.bank_id == bank_id,
                ExamBlueprint.status.in_([BlueprintStatus(s).value for s in statuses]),
                BlueprintQuestion.question_id.isnot(None),
            )
            .distinct()
            .all()
        )
        return {qid for (qid,) in rows}

    def transition_blueprint(self, blueprint_id: int, expected: BlueprintStatus, new: BlueprintStatus) -> bool:
        updated = (
            self.db.query(ExamBlueprint)
            .filter(ExamBlueprint.id == blueprint_id, ExamBlueprint.status == expected.value)
            .update({ExamBlueprint.status: new.value}, synchronize_session=False)
        )
        self._commit(f"Changing status of exam {blueprint_id}")
        return updated == 1

    def update_blueprint_config(self, blueprint_id: int, config: BlueprintConfig) -> bool:
        updated = (
            self.db.query(ExamBlueprint)
            .filter(ExamBlueprint.id == blueprint_id, ExamBlueprint.status == BlueprintStatus.DRAFT.value)
            .update(_column_values(config), synchronize_session=False)
        )
        self._commit(f"Updating configuration of exam {blueprint_id}")
        self.db.expire_all()
        return updated == 1

    # ─── Attempts ──────────────────────────────────────────────────────────────

    def get_attempt(self, attempt_id: int) -> Optional[AttemptRecord]:
        # Always read the committed row; another request may have moved it on.
        self.db.expire_all()
        row = self.db.query(ExamAttempt).filter(ExamAttempt.id == attempt_id).first()
        return AttemptRecord.model_validate(row) if row else None

    def list_attempts(self, student_id: int, blueprint_id: int) -> List[AttemptRecord]:
        self.db.expire_all()
        rows = (
            self.db.query(ExamAttempt)
            .filter(ExamAttempt.student_id == student_id, ExamAttempt.blueprint_id == blueprint_id)
            .order_by(ExamAttempt.sequence)
            .all()
        )
        return [AttemptRecord.model_validate(r) for r in rows]

    def add_attempt(self, student_id: int, blueprint_id: int, sequence: int, started_at: datetime) -> AttemptRecord:
        row = ExamAttempt(
            student_id=student_id,
            blueprint_id=blueprint_id,
            sequence=sequence,
            state=AttemptState.IN_PROGRESS.value,
            started_at=started_at,
            version=0,
        )
        self.db.add(row)
        try:
            self._commit("Starting attempt")
        except IntegrityError as e:
            raise ConcurrentModification(f"Attempt {sequence} for this exam was started concurrently") from e
        self.db.refresh(row)
        return AttemptRecord.model_validate(row)

    def finalize_attempt(self, attempt_id: int, expected_version: int, outcome: GradingOutcome) -> AttemptRecord:
        self._guarded_bump(attempt_id, expected_version, {
            ExamAttempt.state: outcome.state.value,
            ExamAttempt.ended_at: outcome.ended_at,
            ExamAttempt.elapsed_seconds: outcome.elapsed_seconds,
            ExamAttempt.score: outcome.score,
            ExamAttempt.correct_count: outcome.correct_count,
            ExamAttempt.total_questions: outcome.total_questions,
            ExamAttempt.auto_submitted: outcome.auto_submitted,
        })
        try:
            for graded in outcome.graded:
                if graded.answer_id is None:
                    continue
                (
                    self.db.query(AttemptAnswer)
                    .filter(AttemptAnswer.id == graded.answer_id)
                    .update(
                        {AttemptAnswer.correct: graded.correct, AttemptAnswer.partial_score: graded.partial_score},
                        synchronize_session=False,
                    )
                )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Grading attempt {attempt_id} failed; nothing was saved") from e
        self._commit(f"Finalizing attempt {attempt_id}")
        return self.get_attempt(attempt_id)

    # ─── Answers ───────────────────────────────────────────────────────────────

    def list_answers(self, attempt_id: int) -> List[AnswerRecord]:
        rows = (
            self.db.query(AttemptAnswer)
            .filter(AttemptAnswer.attempt_id == attempt_id)
            .order_by(AttemptAnswer.position)
            .all()
        )
        return [AnswerRecord.model_validate(r) for r in rows]

    def upsert_answer(
        self,
        attempt_id: int,
        expected_version: int,
        position: int,
        payload: Any,
        flagged: Optional[bool] = None,
        time_spent_seconds: Optional[int] = None,
    ) -> AnswerRecord:
        self._guarded_bump(attempt_id, expected_version)
        row = (
            self.db.query(AttemptAnswer)
            .filter(AttemptAnswer.attempt_id == attempt_id, AttemptAnswer.position == position)
            .first()
        )
        if row is None:
            row = AttemptAnswer(attempt_id=attempt_id, position=position, flagged=bool(flagged))
            self.db.add(row)
        row.payload = payload
        if flagged is not None:
            row.flagged = flagged
        if time_spent_seconds is not None:
            row.time_spent_seconds = time_spent_seconds
        try:
            self._commit(f"Saving answer {position} of attempt {attempt_id}")
        except IntegrityError as e:
            raise ConcurrentModification(f"Answer {position} of attempt {attempt_id} was saved concurrently") from e
        self.db.refresh(row)
        return AnswerRecord.model_validate(row)
