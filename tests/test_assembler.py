import random

import pytest

from assessment.assembler import (
    assemble, assemble_many, bucket_sizes, filter_pool, preview_capacity,
)
from assessment.errors import (
    InsufficientQuestions, InvalidAssemblyRequest, InvalidPercentageDistribution,
)
from assessment.schemas import Difficulty

from conftest import pool_record

EASY, MEDIUM, HARD = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD
MIX = {EASY: 30, MEDIUM: 50, HARD: 20}


@pytest.fixture
def pool():
    """15 easy, 10 medium, 5 hard."""
    questions = []
    for difficulty, n in ((EASY, 15), (MEDIUM, 10), (HARD, 5)):
        for _ in range(n):
            questions.append(pool_record(len(questions) + 1, difficulty))
    return questions


def test_bucket_sizes_follow_percentages():
    assert bucket_sizes(10, MIX) == {EASY: 3, MEDIUM: 5, HARD: 2}


def test_bucket_sizes_reconcile_rounding_on_largest_bucket():
    sizes = bucket_sizes(10, {EASY: 33.33, MEDIUM: 33.33, HARD: 33.34})
    assert sum(sizes.values()) == 10
    assert sizes == {EASY: 3, MEDIUM: 3, HARD: 4}


def test_percentages_within_tolerance_are_accepted():
    assert sum(bucket_sizes(7, {EASY: 50.005, MEDIUM: 49.99}).values()) == 7


@pytest.mark.parametrize("percentages", [
    {EASY: 30, MEDIUM: 50},
    {EASY: 120, MEDIUM: -20},
    {EASY: 100.5},
])
def test_invalid_percentages_are_rejected(percentages):
    with pytest.raises(InvalidPercentageDistribution):
        bucket_sizes(10, percentages)


def test_preview_capacity_is_limited_by_scarcest_bucket(pool):
    preview = preview_capacity(pool, 10, difficulty_percentages=MIX)
    assert preview.required_by_difficulty == {EASY: 3, MEDIUM: 5, HARD: 2}
    assert preview.available_by_difficulty == {EASY: 15, MEDIUM: 10, HARD: 5}
    assert preview.capacity == 2


def test_preview_without_percentages_uses_whole_pool(pool):
    preview = preview_capacity(pool, 7)
    assert preview.available == 30
    assert preview.capacity == 4
    assert preview.required_by_difficulty is None


def test_count_must_be_positive(pool):
    with pytest.raises(InvalidAssemblyRequest):
        preview_capacity(pool, 0)
    with pytest.raises(InvalidAssemblyRequest):
        assemble(pool, 0)


def test_assemble_fills_each_bucket_in_canonical_order(pool):
    selected = assemble(pool, 10, difficulty_percentages=MIX, rng=random.Random(1))
    assert [q.difficulty for q in selected] == [EASY] * 3 + [MEDIUM] * 5 + [HARD] * 2
    assert len({q.id for q in selected}) == 10


def test_assemble_is_reproducible_with_a_seed(pool):
    first = assemble(pool, 10, difficulty_percentages=MIX, rng=random.Random(42))
    second = assemble(pool, 10, difficulty_percentages=MIX, rng=random.Random(42))
    assert [q.id for q in first] == [q.id for q in second]


def test_short_bucket_raises_insufficient_questions(pool):
    with pytest.raises(InsufficientQuestions) as exc:
        assemble(pool, 10, difficulty_percentages={EASY: 40, HARD: 60})
    assert exc.value.bucket == "hard"
    assert exc.value.required == 6
    assert exc.value.available == 5


def test_pool_too_small_without_percentages(pool):
    with pytest.raises(InsufficientQuestions):
        assemble(pool, 31)


def test_difficulty_filter_restricts_pool(pool):
    selected = assemble(pool, 5, difficulty_filter=[HARD])
    assert {q.difficulty for q in selected} == {HARD}


def test_empty_filter_match_falls_back_to_all_active():
    pool = [pool_record(i, EASY) for i in range(1, 4)] + [pool_record(9, HARD, active=False)]
    assert [q.id for q in filter_pool(pool, [HARD])] == [1, 2, 3]


def test_inactive_questions_are_never_drawn():
    pool = [pool_record(1), pool_record(2, active=False), pool_record(3)]
    selected = assemble(pool, 2)
    assert {q.id for q in selected} == {1, 3}


def test_assemble_many_draws_independent_blueprints(pool):
    drawn = assemble_many(pool, 10, 3, difficulty_percentages=MIX, rng=random.Random(3))
    assert len(drawn) == 3
    assert all(len(b) == 10 for b in drawn)
