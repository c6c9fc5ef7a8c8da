import pytest

from assessment.errors import InsufficientQuestions, InvalidBlueprintTransition, QuestionNotFound
from assessment.evaluator import evaluate, evaluate_question
from assessment.schemas import (
    AssemblyRequest, BlueprintConfig, BlueprintStatus, Difficulty, QuestionCreate,
)

from conftest import BANK, single_choice


def mixed_bank(bank):
    """15 easy, 10 medium and 5 hard questions of assorted types and weights."""
    created = []
    for i in range(15):
        created.append(bank.create(single_choice("B", Difficulty.EASY, weight=1 + i % 3)))
    for i in range(10):
        created.append(bank.create(QuestionCreate(
            bank_id=BANK, prompt=f"Order {i}", difficulty=Difficulty.MEDIUM, weight=2,
            answer_key={"type": "ordering", "items": [{"id": "x", "rank": 2}, {"id": "y", "rank": 1}]},
        )))
    for i in range(5):
        created.append(bank.create(QuestionCreate(
            bank_id=BANK, prompt=f"Command {i}", difficulty=Difficulty.HARD, weight=4,
            answer_key={"type": "command", "accepted": ["git log"], "collapse_whitespace": True},
        )))
    return created


def test_assembly_round_trip_preserves_order_and_keys(bank, blueprints, repo):
    pool = {q.id: q for q in mixed_bank(bank)}
    request = AssemblyRequest(
        count=10,
        title="Midterm",
        difficulty_percentages={"easy": 30, "medium": 50, "hard": 20},
    )
    assembled = blueprints.assemble_blueprints(BANK, request)[0]
    stored = repo.get_blueprint(assembled.id)

    assert [q.question_id for q in stored.questions] == [q.question_id for q in assembled.questions]
    assert [q.position for q in stored.questions] == list(range(1, 11))
    assert [q.difficulty for q in stored.questions] == (
        [Difficulty.EASY] * 3 + [Difficulty.MEDIUM] * 5 + [Difficulty.HARD] * 2
    )
    for snapshot in stored.questions:
        original = pool[snapshot.question_id]
        assert snapshot.weight == original.weight
        assert snapshot.answer_key == original.answer_key
        for payload in ({"selected": "B"}, {"order": ["y", "x"]}, {"command": "git   log"}, None):
            assert evaluate_question(snapshot, payload) == evaluate(original.type, payload, original.answer_key)
    assert stored.total_weight == assembled.total_weight


def test_assembly_titles_and_config(bank, blueprints):
    mixed_bank(bank)
    config = BlueprintConfig(time_limit_minutes=45, max_attempts=3, pass_threshold=60)
    drafts = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=5, quantity=3, title="Quiz", config=config))
    assert [b.title for b in drafts] == ["Quiz - Exam 1", "Quiz - Exam 2", "Quiz - Exam 3"]
    assert all(b.status == BlueprintStatus.DRAFT for b in drafts)
    assert all(b.config == config for b in drafts)


def test_failed_assembly_persists_nothing(bank, blueprints):
    mixed_bank(bank)
    request = AssemblyRequest(count=10, quantity=2, difficulty_percentages={"easy": 40, "hard": 60})
    with pytest.raises(InsufficientQuestions):
        blueprints.assemble_blueprints(BANK, request)
    assert blueprints.list(BANK) == []


def test_preview_matches_bucket_capacity(bank, blueprints):
    mixed_bank(bank)
    preview = blueprints.preview_assembly_capacity(
        BANK, AssemblyRequest(count=10, difficulty_percentages={"easy": 30, "medium": 50, "hard": 20}),
    )
    assert preview.capacity == 2


def test_exclude_in_use_skips_published_questions(bank, blueprints):
    for _ in range(15):
        bank.create(single_choice())
    first = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=10))[0]
    blueprints.publish(first.id)

    used = {q.question_id for q in first.questions}
    second = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=5, exclude_in_use=True))[0]
    assert used.isdisjoint(q.question_id for q in second.questions)

    with pytest.raises(InsufficientQuestions):
        blueprints.assemble_blueprints(BANK, AssemblyRequest(count=6, exclude_in_use=True))


def test_publish_and_close_lifecycle(bank, blueprints):
    for _ in range(10):
        bank.create(single_choice())
    draft = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=10))[0]

    with pytest.raises(InvalidBlueprintTransition):
        blueprints.close(draft.id)

    published = blueprints.publish(draft.id)
    assert published.status == BlueprintStatus.PUBLISHED
    with pytest.raises(InvalidBlueprintTransition):
        blueprints.publish(draft.id)
    with pytest.raises(InvalidBlueprintTransition):
        blueprints.update_config(draft.id, BlueprintConfig(max_attempts=1))

    closed = blueprints.close(draft.id)
    assert closed.status == BlueprintStatus.CLOSED
    assert [b.id for b in blueprints.list(BANK, [BlueprintStatus.CLOSED])] == [draft.id]


def test_small_blueprint_cannot_be_published(bank, blueprints):
    for _ in range(5):
        bank.create(single_choice())
    draft = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=5))[0]
    with pytest.raises(InvalidBlueprintTransition):
        blueprints.publish(draft.id)


def test_draft_config_can_be_replaced(bank, blueprints):
    for _ in range(10):
        bank.create(single_choice())
    draft = blueprints.assemble_blueprints(BANK, AssemblyRequest(count=10))[0]
    updated = blueprints.update_config(draft.id, BlueprintConfig(time_limit_minutes=20, scoring_policy="last"))
    assert updated.time_limit_minutes == 20
    assert updated.scoring_policy.value == "last"


def test_deactivated_questions_leave_the_pool(bank):
    kept = bank.create(single_choice())
    dropped = bank.create(single_choice())
    bank.deactivate(dropped.id)
    assert [q.id for q in bank.list(BANK)] == [kept.id]
    assert len(bank.list(BANK, active_only=False)) == 2
    with pytest.raises(QuestionNotFound):
        bank.get(999)
