"""
Pydantic schemas for the assessment engine.

Question variants are a tagged union on `type`: every answer key carries its own
strongly-typed shape, and every variant has a matching submission model used to
coerce the raw (opaque) payload a student autosaved.

Records (`*Record`) are read-only views handed out by the storage collaborator;
they validate straight from ORM rows (`from_attributes=True`).
"""

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional, Union, Literal

from pydantic import (
    BaseModel, ConfigDict, Field, AfterValidator, field_validator, model_validator,
)


# ─── Enums ─────────────────────────────────────────────────────────────────────

class QuestionType(str, enum.Enum):
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    ORDERING = "ordering"
    PAIR_ASSOCIATION = "pair_association"
    FILL_IN_BLANK = "fill_in_blank"
    DRAG_AND_DROP = "drag_and_drop"
    HOTSPOT = "hotspot"
    COMMAND = "command"


class Difficulty(str, enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class BlueprintStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"


class AttemptState(str, enum.Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not AttemptState.IN_PROGRESS


class ScoringPolicy(str, enum.Enum):
    """Which terminal attempt counts as the student's grade."""
    BEST = "best"
    LAST = "last"


class ResultVisibility(str, enum.Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    NEVER = "never"


# ─── Time helpers ──────────────────────────────────────────────────────────────

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


def _string_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): v for k, v in value.items()}
    return value


# ─── Answer keys (tagged union) ────────────────────────────────────────────────

class SingleChoiceKey(BaseModel):
    type: Literal["single_choice"] = "single_choice"
    correct_option: str


class MultiChoiceKey(BaseModel):
    type: Literal["multi_choice"] = "multi_choice"
    correct_options: List[str] = Field(..., min_length=1)

    @field_validator("correct_options")
    @classmethod
    def check_unique(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError("correct_options must not repeat")
        return v


class RankedItem(BaseModel):
    id: str
    rank: int


class OrderingKey(BaseModel):
    """Canonical order comes from the explicit rank of every item."""
    type: Literal["ordering"] = "ordering"
    items: List[RankedItem] = Field(..., min_length=1)

    @field_validator("items")
    @classmethod
    def check_unique(cls, v: List[RankedItem]) -> List[RankedItem]:
        if len({i.id for i in v}) != len(v):
            raise ValueError("item ids must be unique")
        if len({i.rank for i in v}) != len(v):
            raise ValueError("item ranks must be unique")
        return v

    def canonical_order(self) -> List[str]:
        return [i.id for i in sorted(self.items, key=lambda i: i.rank)]


class PairAssociationKey(BaseModel):
    type: Literal["pair_association"] = "pair_association"
    pairs: Dict[str, str] = Field(..., min_length=1)  # left id → right id


class FillInBlankKey(BaseModel):
    type: Literal["fill_in_blank"] = "fill_in_blank"
    blanks: Dict[str, List[str]] = Field(..., min_length=1)  # blank index → accepted answers

    @field_validator("blanks", mode="before")
    @classmethod
    def normalise_keys(cls, v: Any) -> Any:
        return _string_keys(v)

    @field_validator("blanks")
    @classmethod
    def check_non_empty(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        for index, accepted in v.items():
            if not [a for a in accepted if a.strip()]:
                raise ValueError(f"blank {index} has no accepted answer")
        return v


class DragAndDropKey(BaseModel):
    type: Literal["drag_and_drop"] = "drag_and_drop"
    zones: Dict[str, List[str]] = Field(..., min_length=1)  # zone id → item ids

    @field_validator("zones")
    @classmethod
    def check_single_zone(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        seen = set()
        for zone, items in v.items():
            for item in items:
                if item in seen:
                    raise ValueError(f"item {item} belongs to more than one zone")
                seen.add(item)
        if not seen:
            raise ValueError("at least one item must be placed")
        return v

    def zone_of(self) -> Dict[str, str]:
        return {item: zone for zone, items in self.zones.items() for item in items}


class Region(BaseModel):
    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x <= self.x + self.width and self.y <= y <= self.y + self.height


class HotspotKey(BaseModel):
    type: Literal["hotspot"] = "hotspot"
    regions: List[Region] = Field(..., min_length=1)


class CommandKey(BaseModel):
    type: Literal["command"] = "command"
    accepted: List[str] = Field(..., min_length=1)
    case_sensitive: bool = False
    collapse_whitespace: bool = False


AnswerKey = Annotated[
    Union[
        SingleChoiceKey, MultiChoiceKey, OrderingKey, PairAssociationKey,
        FillInBlankKey, DragAndDropKey, HotspotKey, CommandKey,
    ],
    Field(discriminator="type"),
]


# ─── Submitted answers (one shape per variant) ─────────────────────────────────

class SingleChoiceSubmission(BaseModel):
    selected: str


class MultiChoiceSubmission(BaseModel):
    selected: List[str]


class OrderingSubmission(BaseModel):
    order: List[str]


def _answer_text(value: Any) -> Optional[str]:
    """One map entry of a submitted answer: numbers become text, anything else unusable is None."""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _answer_entries(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    return {str(k): _answer_text(v) for k, v in value.items()}


# A bad entry only costs its own part of the credit, never the whole answer.

class PairAssociationSubmission(BaseModel):
    pairs: Dict[str, Optional[str]]

    @field_validator("pairs", mode="before")
    @classmethod
    def normalise_entries(cls, v: Any) -> Any:
        return _answer_entries(v)


class FillInBlankSubmission(BaseModel):
    blanks: Dict[str, Optional[str]]

    @field_validator("blanks", mode="before")
    @classmethod
    def normalise_entries(cls, v: Any) -> Any:
        return _answer_entries(v)


class DragAndDropSubmission(BaseModel):
    zones: Dict[str, List[str]]

    @field_validator("zones", mode="before")
    @classmethod
    def normalise_entries(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        zones = {}
        for zone, items in v.items():
            if not isinstance(items, list):
                items = []
            zones[str(zone)] = [t for t in (_answer_text(i) for i in items) if t is not None]
        return zones


class HotspotSubmission(BaseModel):
    x: float
    y: float


class CommandSubmission(BaseModel):
    command: str


SUBMISSION_MODELS = {
    QuestionType.SINGLE_CHOICE: SingleChoiceSubmission,
    QuestionType.MULTI_CHOICE: MultiChoiceSubmission,
    QuestionType.ORDERING: OrderingSubmission,
    QuestionType.PAIR_ASSOCIATION: PairAssociationSubmission,
    QuestionType.FILL_IN_BLANK: FillInBlankSubmission,
    QuestionType.DRAG_AND_DROP: DragAndDropSubmission,
    QuestionType.HOTSPOT: HotspotSubmission,
    QuestionType.COMMAND: CommandSubmission,
}


class EvaluationResult(BaseModel):
    correct: bool
    partial_score: float = Field(..., ge=0.0, le=1.0)


BLANK_RESULT = EvaluationResult(correct=False, partial_score=0.0)


# ─── Question bank ─────────────────────────────────────────────────────────────

class QuestionCreate(BaseModel):
    bank_id: int
    prompt: str = Field(..., min_length=1)
    weight: float = Field(1.0, gt=0)
    difficulty: Difficulty = Difficulty.MEDIUM
    answer_key: AnswerKey
    content: Dict[str, Any] = Field(default_factory=dict, description="Display data: options, items, zones, image")
    active: bool = True

    @property
    def type(self) -> QuestionType:
        return QuestionType(self.answer_key.type)


class QuestionUpdate(BaseModel):
    prompt: Optional[str] = Field(None, min_length=1)
    weight: Optional[float] = Field(None, gt=0)
    difficulty: Optional[Difficulty] = None
    answer_key: Optional[AnswerKey] = None
    content: Optional[Dict[str, Any]] = None
    active: Optional[bool] = None


class QuestionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bank_id: int
    type: QuestionType
    prompt: str
    weight: float
    difficulty: Difficulty
    answer_key: AnswerKey
    content: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True


# ─── Blueprints ────────────────────────────────────────────────────────────────

class BlueprintConfig(BaseModel):
    """Scoring / timing / retry / serving configuration of an exam blueprint."""
    time_limit_minutes: Optional[int] = Field(None, ge=1, le=600)
    max_attempts: Optional[int] = Field(None, ge=1, le=100)  # None = unlimited
    cooldown_hours: float = Field(0, ge=0, le=168)
    pass_threshold: float = Field(70, ge=0, le=100)
    scoring_policy: ScoringPolicy = ScoringPolicy.BEST
    result_visibility: ResultVisibility = ResultVisibility.IMMEDIATE
    results_available_at: Optional[UtcDatetime] = None
    shuffle_questions: bool = True
    shuffle_options: bool = True
    available_from: Optional[UtcDatetime] = None
    available_until: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def check_dates(self) -> "BlueprintConfig":
        if self.result_visibility == ResultVisibility.SCHEDULED and self.results_available_at is None:
            raise ValueError("results_available_at is required for scheduled result visibility")
        if self.available_from and self.available_until and self.available_from >= self.available_until:
            raise ValueError("available_until must be after available_from")
        return self


class BlueprintQuestionSnapshot(BaseModel):
    """Question content frozen into a blueprint at assembly time."""
    model_config = ConfigDict(from_attributes=True)

    position: int
    question_id: int
    type: QuestionType
    prompt: str
    weight: float
    difficulty: Difficulty
    answer_key: AnswerKey
    content: Dict[str, Any] = Field(default_factory=dict)


class BlueprintRecord(BlueprintConfig):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bank_id: int
    title: str
    status: BlueprintStatus
    questions: List[BlueprintQuestionSnapshot] = Field(default_factory=list)
    created_at: Optional[UtcDatetime] = None

    @property
    def config(self) -> BlueprintConfig:
        return BlueprintConfig.model_validate(self.model_dump(include=set(BlueprintConfig.model_fields)))

    @property
    def total_weight(self) -> float:
        return sum(q.weight for q in self.questions)

    def question_at(self, position: int) -> Optional[BlueprintQuestionSnapshot]:
        for q in self.questions:
            if q.position == position:
                return q
        return None


class AssemblyRequest(BaseModel):
    """Teacher request to generate one or more blueprints from a bank."""
    count: int = Field(..., ge=1, le=500, description="Questions per blueprint")
    quantity: int = Field(1, ge=1, le=50, description="Blueprints to generate")
    difficulty_filter: Optional[List[Difficulty]] = None
    difficulty_percentages: Optional[Dict[Difficulty, float]] = None
    title: str = "Exam"
    config: BlueprintConfig = Field(default_factory=BlueprintConfig)
    exclude_in_use: bool = False


class AssemblyPreview(BaseModel):
    available: int
    available_by_difficulty: Dict[Difficulty, int]
    required_by_difficulty: Optional[Dict[Difficulty, int]] = None
    capacity: int


# ─── Attempts & answers ────────────────────────────────────────────────────────

class AttemptRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    blueprint_id: int
    sequence: int
    state: AttemptState
    started_at: UtcDatetime
    ended_at: Optional[UtcDatetime] = None
    elapsed_seconds: Optional[int] = None
    score: Optional[float] = None
    correct_count: Optional[int] = None
    total_questions: Optional[int] = None
    auto_submitted: bool = False
    version: int = 0


class AnswerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attempt_id: int
    position: int
    payload: Any = None
    flagged: bool = False
    time_spent_seconds: Optional[int] = None
    correct: Optional[bool] = None
    partial_score: Optional[float] = None


class GradedAnswer(BaseModel):
    position: int
    answer_id: Optional[int] = None  # None when the question was left blank
    correct: bool
    partial_score: float


class GradingOutcome(BaseModel):
    """Everything written atomically when an attempt becomes terminal."""
    state: AttemptState
    ended_at: UtcDatetime
    elapsed_seconds: int
    score: float
    correct_count: int
    total_questions: int
    graded: List[GradedAnswer]

    @property
    def auto_submitted(self) -> bool:
        return self.state == AttemptState.EXPIRED


class PolicyDecision(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    retry_at: Optional[UtcDatetime] = None


# ─── Serving views ─────────────────────────────────────────────────────────────

class PresentedQuestion(BaseModel):
    number: int
    position: int
    type: QuestionType
    prompt: str
    content: Dict[str, Any]
    saved_answer: Any = None
    flagged: bool = False


class AttemptView(BaseModel):
    attempt_id: int
    blueprint_id: int
    title: str
    state: AttemptState
    sequence: int
    started_at: UtcDatetime
    deadline: Optional[UtcDatetime] = None
    remaining_seconds: Optional[int] = None
    questions: List[PresentedQuestion] = Field(default_factory=list)


class QuestionResult(BaseModel):
    position: int
    question_id: int
    type: QuestionType
    weight: float
    answered: bool
    correct: bool
    partial_score: float
    submitted: Any = None
    answer_key: Dict[str, Any]


class AttemptResult(BaseModel):
    attempt_id: int
    blueprint_id: int
    sequence: int
    state: AttemptState
    score: float
    passed: bool
    pass_threshold: float
    correct_count: int
    total_questions: int
    elapsed_seconds: int
    auto_submitted: bool
    details_visible: bool
    breakdown: Optional[List[QuestionResult]] = None
