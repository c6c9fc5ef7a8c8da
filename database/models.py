"""
SQLAlchemy models for the assessment engine
Question bank → exam blueprint (with frozen question snapshots) → attempts → answers

Enum-valued columns are stored as plain strings; the pydantic records in
assessment.schemas coerce them back to their enums.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, DateTime, Text, Float, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database.database import Base


# ==========================================
# QUESTION BANK
# ==========================================

class PoolQuestion(Base):
    """
    Question in a bank. answer_key is the validated tagged-union key
    ({"type": "...", ...}); content holds display data (options, items, zones, image).
    """
    __tablename__ = "pool_questions"

    id = Column(Integer, primary_key=True, index=True)
    bank_id = Column(Integer, nullable=False, index=True)
    type = Column(String(32), nullable=False)
    prompt = Column(Text, nullable=False)
    weight = Column(Float, nullable=False, default=1.0)
    difficulty = Column(String(10), nullable=False, index=True)  # easy, medium, hard
    answer_key = Column(JSON, nullable=False)
    content = Column(JSON, nullable=False, default=dict)
    active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<PoolQuestion(id={self.id}, bank_id={self.bank_id}, type='{self.type}')>"


# ==========================================
# EXAM BLUEPRINTS
# ==========================================

class ExamBlueprint(Base):
    """
    Assembled exam: ordered question snapshots plus scoring, timing, retry and
    serving configuration. status: draft → published → closed.
    """
    __tablename__ = "exam_blueprints"

    id = Column(Integer, primary_key=True, index=True)
    bank_id = Column(Integer, nullable=False, index=True)
    title = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default="draft", index=True)

    time_limit_minutes = Column(Integer, nullable=True)  # null = untimed
    max_attempts = Column(Integer, nullable=True)  # null = unlimited
    cooldown_hours = Column(Float, nullable=False, default=0)
    pass_threshold = Column(Float, nullable=False, default=70)
    scoring_policy = Column(String(8), nullable=False, default="best")
    result_visibility = Column(String(16), nullable=False, default="immediate")
    results_available_at = Column(DateTime(timezone=True), nullable=True)
    shuffle_questions = Column(Boolean, nullable=False, default=True)
    shuffle_options = Column(Boolean, nullable=False, default=True)
    available_from = Column(DateTime(timezone=True), nullable=True)
    available_until = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    questions = relationship(
        "BlueprintQuestion",
        back_populates="blueprint",
        cascade="all, delete-orphan",
        order_by="BlueprintQuestion.position",
    )

    def __repr__(self):
        return f"<ExamBlueprint(id={self.id}, title='{self.title}', status='{self.status}')>"


class BlueprintQuestion(Base):
    """
    Question frozen into a blueprint. The answer key and weight are copied at
    assembly time so later bank edits never change how an exam is scored.
    """
    __tablename__ = "blueprint_questions"
    __table_args__ = (UniqueConstraint("blueprint_id", "position", name="uq_blueprint_position"),)

    id = Column(Integer, primary_key=True, index=True)
    blueprint_id = Column(Integer, ForeignKey("exam_blueprints.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    question_id = Column(Integer, ForeignKey("pool_questions.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(String(32), nullable=False)
    prompt = Column(Text, nullable=False)
    weight = Column(Float, nullable=False)
    difficulty = Column(String(10), nullable=False)
    answer_key = Column(JSON, nullable=False)
    content = Column(JSON, nullable=False, default=dict)

    blueprint = relationship("ExamBlueprint", back_populates="questions")

    def __repr__(self):
        return f"<BlueprintQuestion(blueprint_id={self.blueprint_id}, position={self.position}, q_id={self.question_id})>"


# ==========================================
# ATTEMPTS
# ==========================================

class ExamAttempt(Base):
    """
    One student's run through a blueprint. state: in_progress → submitted | expired.
    version is bumped on every write and guards every state change.
    """
    __tablename__ = "exam_attempts"
    __table_args__ = (
        UniqueConstraint("student_id", "blueprint_id", "sequence", name="uq_attempt_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, nullable=False, index=True)
    blueprint_id = Column(Integer, ForeignKey("exam_blueprints.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    state = Column(String(16), nullable=False, default="in_progress", index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    elapsed_seconds = Column(Integer, nullable=True)
    score = Column(Float, nullable=True)
    correct_count = Column(Integer, nullable=True)
    total_questions = Column(Integer, nullable=True)
    auto_submitted = Column(Boolean, default=False, nullable=False)
    version = Column(Integer, default=0, nullable=False)

    blueprint = relationship("ExamBlueprint")
    answers = relationship("AttemptAnswer", back_populates="attempt", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ExamAttempt(id={self.id}, student_id={self.student_id}, blueprint_id={self.blueprint_id}, state='{self.state}')>"


class AttemptAnswer(Base):
    """Latest raw answer for one blueprint position; graded when the attempt ends."""
    __tablename__ = "attempt_answers"
    __table_args__ = (UniqueConstraint("attempt_id", "position", name="uq_answer_position"),)

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    payload = Column(JSON, nullable=True)
    flagged = Column(Boolean, default=False, nullable=False)
    time_spent_seconds = Column(Integer, nullable=True)
    correct = Column(Boolean, nullable=True)  # null until graded
    partial_score = Column(Float, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    attempt = relationship("ExamAttempt", back_populates="answers")

    def __repr__(self):
        return f"<AttemptAnswer(attempt_id={self.attempt_id}, position={self.position}, correct={self.correct})>"
