"""
Blueprint lifecycle and question bank.

A blueprint is assembled as DRAFT, frozen with answer-key snapshots, then moves
DRAFT → PUBLISHED → CLOSED. Only a PUBLISHED blueprint accepts new attempts.
"""

import logging
import os
import random
from typing import List, Optional

from assessment import assembler
from assessment.errors import BlueprintNotFound, InvalidBlueprintTransition, QuestionNotFound
from assessment.repository import AssessmentRepository
from assessment.schemas import (
    AssemblyPreview, AssemblyRequest, BlueprintConfig, BlueprintRecord, BlueprintStatus,
    QuestionCreate, QuestionRecord, QuestionUpdate,
)

log = logging.getLogger("assessment.blueprints")

MIN_PUBLISH_QUESTIONS = int(os.getenv("EXAM_MIN_PUBLISH_QUESTIONS") or 10)


class QuestionBank:
    """Create, read, update and deactivate bank questions."""

    def __init__(self, repository: AssessmentRepository):
        self.repository = repository

    def create(self, question: QuestionCreate) -> QuestionRecord:
        record = self.repository.add_question(question)
        log.info(f"[BANK] Added {record.type.value} question {record.id} to bank {record.bank_id}")
        return record

    def get(self, question_id: int) -> QuestionRecord:
        record = self.repository.get_question(question_id)
        if record is None:
            raise QuestionNotFound(f"Question {question_id} not found")
        return record

    def list(self, bank_id: int, active_only: bool = True) -> List[QuestionRecord]:
        return self.repository.list_questions(bank_id, active_only=active_only)

    def update(self, question_id: int, changes: QuestionUpdate) -> QuestionRecord:
        # Existing blueprints keep their snapshot; only future assemblies see the change.
        record = self.repository.update_question(question_id, changes)
        if record is None:
            raise QuestionNotFound(f"Question {question_id} not found")
        return record

    def deactivate(self, question_id: int) -> QuestionRecord:
        return self.update(question_id, QuestionUpdate(active=False))


class BlueprintService:
    def __init__(self, repository: AssessmentRepository, rng: Optional[random.Random] = None):
        self.repository = repository
        self.rng = rng or random.Random()

    def _pool(self, bank_id: int, request: AssemblyRequest) -> List[QuestionRecord]:
        pool = self.repository.list_questions(bank_id, active_only=True)
        if request.exclude_in_use:
            in_use = self.repository.question_ids_in_use(bank_id, [BlueprintStatus.PUBLISHED])
            pool = [q for q in pool if q.id not in in_use]
            log.info(f"[ASSEMBLY] Excluding {len(in_use)} question(s) used by published exams, {len(pool)} left")
        return pool

    def preview_assembly_capacity(self, bank_id: int, request: AssemblyRequest) -> AssemblyPreview:
        return assembler.preview_capacity(
            self._pool(bank_id, request),
            request.count,
            request.difficulty_filter,
            request.difficulty_percentages,
        )

    def assemble_blueprints(self, bank_id: int, request: AssemblyRequest) -> List[BlueprintRecord]:
        """
        Generate `request.quantity` DRAFT blueprints from the bank.

        Every draw is validated before anything is persisted, so a shortfall in
        any blueprint leaves no partial set behind.
        """
        drawn = assembler.assemble_many(
            self._pool(bank_id, request),
            request.count,
            request.quantity,
            request.difficulty_filter,
            request.difficulty_percentages,
            self.rng,
        )
        blueprints = []
        for n, questions in enumerate(drawn, start=1):
            title = f"{request.title} - Exam {n}"
            blueprints.append(self.repository.add_blueprint(bank_id, title, request.config, questions))
        log.info(f"[ASSEMBLY] Created {len(blueprints)} draft blueprint(s) for bank {bank_id}: {[b.id for b in blueprints]}")
        return blueprints

    def get(self, blueprint_id: int) -> BlueprintRecord:
        blueprint = self.repository.get_blueprint(blueprint_id)
        if blueprint is None:
            raise BlueprintNotFound(f"Exam blueprint {blueprint_id} not found")
        return blueprint

    def list(self, bank_id: int, statuses: Optional[List[BlueprintStatus]] = None) -> List[BlueprintRecord]:
        return self.repository.list_blueprints(bank_id, statuses)

    def update_config(self, blueprint_id: int, config: BlueprintConfig) -> BlueprintRecord:
        blueprint = self.get(blueprint_id)
        if blueprint.status != BlueprintStatus.DRAFT or not self.repository.update_blueprint_config(blueprint_id, config):
            raise InvalidBlueprintTransition(f"Exam {blueprint_id} is {blueprint.status.value}; only drafts can be reconfigured")
        return self.get(blueprint_id)

    def publish(self, blueprint_id: int) -> BlueprintRecord:
        blueprint = self.get(blueprint_id)
        if blueprint.status != BlueprintStatus.DRAFT:
            raise InvalidBlueprintTransition(f"Only draft exams can be published; exam {blueprint_id} is {blueprint.status.value}")
        if len(blueprint.questions) < MIN_PUBLISH_QUESTIONS:
            raise InvalidBlueprintTransition(
                f"An exam needs at least {MIN_PUBLISH_QUESTIONS} questions to be published, "
                f"exam {blueprint_id} has {len(blueprint.questions)}"
            )
        return self._transition(blueprint_id, BlueprintStatus.DRAFT, BlueprintStatus.PUBLISHED)

    def close(self, blueprint_id: int) -> BlueprintRecord:
        blueprint = self.get(blueprint_id)
        if blueprint.status != BlueprintStatus.PUBLISHED:
            raise InvalidBlueprintTransition(f"Only published exams can be closed; exam {blueprint_id} is {blueprint.status.value}")
        return self._transition(blueprint_id, BlueprintStatus.PUBLISHED, BlueprintStatus.CLOSED)

    def _transition(self, blueprint_id: int, expected: BlueprintStatus, new: BlueprintStatus) -> BlueprintRecord:
        if not self.repository.transition_blueprint(blueprint_id, expected, new):
            raise InvalidBlueprintTransition(f"Exam {blueprint_id} changed status concurrently")
        log.info(f"[BLUEPRINT] Exam {blueprint_id}: {expected.value} -> {new.value}")
        return self.get(blueprint_id)
