"""
Answer Evaluator

Scores one submitted answer against its answer key. Pure and deterministic:
no I/O, no clock, safe to run in parallel across attempts and questions.

A blank, unrecognised or malformed submission is never an error: it scores
`correct=False, partial_score=0`, so one bad payload can't break the
submission of a whole attempt.
"""

import re
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, TypeAdapter, ValidationError

from assessment.schemas import (
    AnswerKey, BLANK_RESULT, EvaluationResult, QuestionType, SUBMISSION_MODELS,
    BlueprintQuestionSnapshot,
    SingleChoiceKey, MultiChoiceKey, OrderingKey, PairAssociationKey,
    FillInBlankKey, DragAndDropKey, HotspotKey, CommandKey,
    SingleChoiceSubmission, MultiChoiceSubmission, OrderingSubmission,
    PairAssociationSubmission, FillInBlankSubmission, DragAndDropSubmission,
    HotspotSubmission, CommandSubmission,
)

_KEY_ADAPTER = TypeAdapter(AnswerKey)
_WHITESPACE = re.compile(r"\s+")


def _result(correct: bool, partial: float) -> EvaluationResult:
    if correct:
        return EvaluationResult(correct=True, partial_score=1.0)
    return EvaluationResult(correct=False, partial_score=min(1.0, max(0.0, partial)))


# ─── Per-variant rules ─────────────────────────────────────────────────────────

def _single_choice(sub: SingleChoiceSubmission, key: SingleChoiceKey) -> EvaluationResult:
    return _result(sub.selected == key.correct_option, 0.0)


def _multi_choice(sub: MultiChoiceSubmission, key: MultiChoiceKey) -> EvaluationResult:
    selected = set(sub.selected)
    correct = set(key.correct_options)
    if selected == correct:
        return _result(True, 1.0)
    hits = len(selected & correct)
    false_positives = len(selected - correct)
    return _result(False, (hits - false_positives) / len(correct))


def _ordering(sub: OrderingSubmission, key: OrderingKey) -> EvaluationResult:
    # All-or-nothing against the explicit rank order.
    return _result(list(sub.order) == key.canonical_order(), 0.0)


def _pair_association(sub: PairAssociationSubmission, key: PairAssociationKey) -> EvaluationResult:
    matched = sum(1 for left, right in key.pairs.items() if sub.pairs.get(left) == right)
    return _result(matched == len(key.pairs), matched / len(key.pairs))


def _fill_in_blank(sub: FillInBlankSubmission, key: FillInBlankKey) -> EvaluationResult:
    matched = 0
    for index, accepted in key.blanks.items():
        given = (sub.blanks.get(index) or "").strip().lower()
        if given and given in {a.strip().lower() for a in accepted}:
            matched += 1
    return _result(matched == len(key.blanks), matched / len(key.blanks))


def _drag_and_drop(sub: DragAndDropSubmission, key: DragAndDropKey) -> EvaluationResult:
    expected_zone = key.zone_of()

    # Where did the student put each item? An item dropped in several zones
    # is ambiguous and counts as misplaced.
    placements: Dict[str, set] = {}
    for zone, items in sub.zones.items():
        for item in items:
            placements.setdefault(item, set()).add(zone)

    hits = sum(1 for item, zone in expected_zone.items() if placements.get(item) == {zone})
    stray = sum(1 for item in placements if item not in expected_zone)
    total = len(expected_zone)
    return _result(hits == total and stray == 0, hits / total)


def _hotspot(sub: HotspotSubmission, key: HotspotKey) -> EvaluationResult:
    return _result(any(r.contains(sub.x, sub.y) for r in key.regions), 0.0)


def _normalise_command(text: str, key: CommandKey) -> str:
    text = text.strip()
    if key.collapse_whitespace:
        text = _WHITESPACE.sub(" ", text)
    if not key.case_sensitive:
        text = text.lower()
    return text


def _command(sub: CommandSubmission, key: CommandKey) -> EvaluationResult:
    given = _normalise_command(sub.command, key)
    if not given:
        return BLANK_RESULT
    accepted = {_normalise_command(a, key) for a in key.accepted}
    return _result(given in accepted, 0.0)


_EVALUATORS: Dict[QuestionType, Callable[[Any, Any], EvaluationResult]] = {
    QuestionType.SINGLE_CHOICE: _single_choice,
    QuestionType.MULTI_CHOICE: _multi_choice,
    QuestionType.ORDERING: _ordering,
    QuestionType.PAIR_ASSOCIATION: _pair_association,
    QuestionType.FILL_IN_BLANK: _fill_in_blank,
    QuestionType.DRAG_AND_DROP: _drag_and_drop,
    QuestionType.HOTSPOT: _hotspot,
    QuestionType.COMMAND: _command,
}

assert set(_EVALUATORS) == set(QuestionType), "every question type needs an evaluator"


# ─── Coercion ──────────────────────────────────────────────────────────────────

def parse_answer_key(question_type: QuestionType, answer_key: Any, config: Optional[Dict[str, Any]] = None):
    """
    Build the typed answer key for a question.

    `config` carries per-question flags (e.g. `case_sensitive` for command
    questions) and is merged over the key. Raises pydantic.ValidationError for a
    malformed key: keys are teacher input and are validated when questions are
    saved, long before anything is graded.
    """
    if isinstance(answer_key, BaseModel):
        data = answer_key.model_dump()
    else:
        data = dict(answer_key or {})
    data.update(config or {})
    data["type"] = QuestionType(question_type).value
    return _KEY_ADAPTER.validate_python(data)


def parse_submission(question_type: QuestionType, submitted: Any) -> Optional[BaseModel]:
    """Coerce a raw payload into the variant's submission model; None if unusable."""
    if submitted is None:
        return None
    model = SUBMISSION_MODELS[QuestionType(question_type)]
    if isinstance(submitted, model):
        return submitted
    if isinstance(submitted, BaseModel):
        submitted = submitted.model_dump()
    try:
        return model.model_validate(submitted)
    except ValidationError:
        return None


# ─── Public API ────────────────────────────────────────────────────────────────

def evaluate(
    question_type: Union[QuestionType, str],
    submitted: Any,
    answer_key: Any,
    config: Optional[Dict[str, Any]] = None,
) -> EvaluationResult:
    """
    Evaluate one submitted answer.

    Args:
        question_type: One of the eight QuestionType variants
        submitted: Raw submitted payload (dict) or a typed submission model
        answer_key: Typed answer key or its dict form
        config: Optional per-question flags merged over the key

    Returns:
        EvaluationResult(correct, partial_score in [0, 1])
    """
    qtype = QuestionType(question_type)
    key = parse_answer_key(qtype, answer_key, config)
    submission = parse_submission(qtype, submitted)
    if submission is None:
        return BLANK_RESULT
    return _EVALUATORS[qtype](submission, key)


def evaluate_question(question: BlueprintQuestionSnapshot, submitted: Any) -> EvaluationResult:
    """Evaluate against the answer key snapshotted into a blueprint."""
    submission = parse_submission(question.type, submitted)
    if submission is None:
        return BLANK_RESULT
    return _EVALUATORS[question.type](submission, question.answer_key)
