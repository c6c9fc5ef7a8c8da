"""
Exam Assembler

Builds the ordered question list of an exam blueprint from a question pool under
count / difficulty-filter / difficulty-percentage constraints, and previews how
many non-overlapping blueprints the pool could support.

The stored order is canonical. Shuffling questions or options is a serving-time
concern of the attempt layer and never happens here.
"""

import logging
import math
import random
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from assessment.errors import (
    InsufficientQuestions, InvalidAssemblyRequest, InvalidPercentageDistribution,
)
from assessment.schemas import AssemblyPreview, Difficulty, QuestionRecord

log = logging.getLogger("assessment.assembly")

PERCENTAGE_TOLERANCE = 0.01


# ─── Pool filtering ────────────────────────────────────────────────────────────

def filter_pool(
    pool: Iterable[QuestionRecord],
    difficulty_filter: Optional[Sequence[Difficulty]] = None,
) -> List[QuestionRecord]:
    """
    Active questions matching the difficulty filter.

    Falls back to every active question when the filter leaves nothing.
    """
    active = [q for q in pool if q.active]
    if not difficulty_filter:
        return active
    wanted = {Difficulty(d) for d in difficulty_filter}
    filtered = [q for q in active if q.difficulty in wanted]
    if not filtered:
        log.info(f"[ASSEMBLY] Difficulty filter {sorted(d.value for d in wanted)} matched nothing, using all {len(active)} active questions")
        return active
    return filtered


def group_by_difficulty(pool: Iterable[QuestionRecord]) -> Dict[Difficulty, List[QuestionRecord]]:
    buckets: Dict[Difficulty, List[QuestionRecord]] = {d: [] for d in Difficulty}
    for q in pool:
        buckets[q.difficulty].append(q)
    return buckets


# ─── Bucket sizing ─────────────────────────────────────────────────────────────

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def bucket_sizes(count: int, percentages: Mapping[Difficulty, float]) -> Dict[Difficulty, int]:
    """
    Required questions per difficulty for a blueprint of `count` questions.

    Each bucket is round(count * pct / 100); the rounding remainder is
    reconciled on the largest bucket so the sizes add up to exactly `count`.
    """
    if count < 1:
        raise InvalidAssemblyRequest("count must be at least 1")

    pct = {Difficulty(d): float(v) for d, v in percentages.items()}
    for d, v in pct.items():
        if v < 0 or v > 100:
            raise InvalidPercentageDistribution(f"percentage for '{d.value}' must be between 0 and 100, got {v}")
    total = sum(pct.values())
    if abs(total - 100) > PERCENTAGE_TOLERANCE:
        raise InvalidPercentageDistribution(f"difficulty percentages add up to {total}, expected 100")

    sizes = {d: _round_half_up(count * pct.get(d, 0.0) / 100) for d in Difficulty}
    remainder = count - sum(sizes.values())
    if remainder:
        # Largest bucket absorbs the remainder; ties go to the first difficulty.
        largest = max(Difficulty, key=lambda d: (sizes[d], pct.get(d, 0.0), -list(Difficulty).index(d)))
        sizes[largest] = max(0, sizes[largest] + remainder)
    return sizes


# ─── Preview ───────────────────────────────────────────────────────────────────

def preview_capacity(
    pool: Iterable[QuestionRecord],
    count: int,
    difficulty_filter: Optional[Sequence[Difficulty]] = None,
    difficulty_percentages: Optional[Mapping[Difficulty, float]] = None,
) -> AssemblyPreview:
    """
    How many non-overlapping blueprints the pool could support.

    Advisory only: generation samples each blueprint independently and may
    reuse questions across blueprints.
    """
    if count < 1:
        raise InvalidAssemblyRequest("count must be at least 1")

    candidates = filter_pool(pool, difficulty_filter)
    buckets = group_by_difficulty(candidates)
    available_by_difficulty = {d: len(qs) for d, qs in buckets.items()}

    if difficulty_percentages:
        required = bucket_sizes(count, difficulty_percentages)
        per_bucket = [
            available_by_difficulty[d] // need
            for d, need in required.items()
            if need > 0
        ]
        capacity = min(per_bucket) if per_bucket else 0
    else:
        required = None
        capacity = len(candidates) // count

    counts = {d.value: n for d, n in available_by_difficulty.items()}
    log.info(f"[PREVIEW] count={count} available={len(candidates)} by_difficulty={counts} capacity={capacity}")
    return AssemblyPreview(
        available=len(candidates),
        available_by_difficulty=available_by_difficulty,
        required_by_difficulty=required,
        capacity=capacity,
    )


# ─── Generation ────────────────────────────────────────────────────────────────

def _sample(questions: List[QuestionRecord], k: int, rng: random.Random, bucket: Optional[str] = None) -> List[QuestionRecord]:
    if len(questions) < k:
        raise InsufficientQuestions(required=k, available=len(questions), bucket=bucket)
    return rng.sample(questions, k)


def assemble(
    pool: Iterable[QuestionRecord],
    count: int,
    difficulty_filter: Optional[Sequence[Difficulty]] = None,
    difficulty_percentages: Optional[Mapping[Difficulty, float]] = None,
    rng: Optional[random.Random] = None,
) -> List[QuestionRecord]:
    """
    Draw the ordered question list for one blueprint.

    Args:
        pool: Candidate questions (inactive ones are ignored)
        count: Questions per blueprint
        difficulty_filter: Optional difficulties to restrict the pool to
        difficulty_percentages: Optional {difficulty: pct} summing to 100
        rng: Random source (seed it for reproducible assemblies)

    Returns:
        Questions in canonical order (easy, medium, hard buckets when
        percentages are given, draw order otherwise)

    Raises:
        InsufficientQuestions: a bucket (or the whole pool) is too small
        InvalidPercentageDistribution: percentages out of range or not 100
    """
    if count < 1:
        raise InvalidAssemblyRequest("count must be at least 1")
    rng = rng or random.Random()
    candidates = filter_pool(pool, difficulty_filter)

    if not difficulty_percentages:
        return _sample(candidates, count, rng)

    required = bucket_sizes(count, difficulty_percentages)
    buckets = group_by_difficulty(candidates)
    selected: List[QuestionRecord] = []
    for difficulty in Difficulty:
        need = required[difficulty]
        if need:
            selected.extend(_sample(buckets[difficulty], need, rng, bucket=difficulty.value))
    return selected


def assemble_many(
    pool: Iterable[QuestionRecord],
    count: int,
    quantity: int,
    difficulty_filter: Optional[Sequence[Difficulty]] = None,
    difficulty_percentages: Optional[Mapping[Difficulty, float]] = None,
    rng: Optional[random.Random] = None,
) -> List[List[QuestionRecord]]:
    """Draw `quantity` independent blueprints; fails as a whole if any draw fails."""
    if quantity < 1:
        raise InvalidAssemblyRequest("quantity must be at least 1")
    pool = list(pool)
    rng = rng or random.Random()
    drawn = [
        assemble(pool, count, difficulty_filter, difficulty_percentages, rng)
        for _ in range(quantity)
    ]
    log.info(f"[ASSEMBLY] Drew {quantity} blueprint(s) of {count} question(s) from a pool of {len(pool)}")
    return drawn
