from itertools import combinations

import pytest
from pydantic import ValidationError

from assessment.evaluator import evaluate, parse_submission
from assessment.schemas import QuestionType


def test_single_choice_scores_exact_option_only():
    key = {"correct_option": "B"}
    hit = evaluate("single_choice", {"selected": "B"}, key)
    miss = evaluate("single_choice", {"selected": "A"}, key)
    assert (hit.correct, hit.partial_score) == (True, 1.0)
    assert (miss.correct, miss.partial_score) == (False, 0.0)


def test_multi_choice_false_positive_costs_half():
    result = evaluate("multi_choice", {"selected": ["A", "B", "C"]}, {"correct_options": ["A", "B"]})
    assert result.correct is False
    assert result.partial_score == pytest.approx(0.5)


def test_multi_choice_correct_only_on_exact_set():
    key = {"correct_options": ["A", "B"]}
    options = ["A", "B", "C", "D"]
    for size in range(len(options) + 1):
        for chosen in combinations(options, size):
            result = evaluate("multi_choice", {"selected": list(chosen)}, key)
            assert result.correct == (set(chosen) == {"A", "B"})
            assert 0.0 <= result.partial_score <= 1.0


def test_multi_choice_never_goes_negative():
    result = evaluate("multi_choice", {"selected": ["C", "D", "E"]}, {"correct_options": ["A", "B"]})
    assert result.partial_score == 0.0


def test_ordering_compares_against_explicit_rank():
    key = {"items": [{"id": "c", "rank": 3}, {"id": "a", "rank": 1}, {"id": "b", "rank": 2}]}
    assert evaluate("ordering", {"order": ["a", "b", "c"]}, key).correct
    wrong = evaluate("ordering", {"order": ["b", "a", "c"]}, key)
    assert (wrong.correct, wrong.partial_score) == (False, 0.0)


def test_pair_association_partial_credit():
    key = {"pairs": {"l1": "r1", "l2": "r2", "l3": "r3", "l4": "r4"}}
    result = evaluate("pair_association", {"pairs": {"l1": "r1", "l2": "r2", "l3": "r4"}}, key)
    assert result.correct is False
    assert result.partial_score == pytest.approx(0.5)
    assert evaluate("pair_association", {"pairs": dict(key["pairs"])}, key).correct


def test_fill_in_blank_trims_and_ignores_case():
    key = {"blanks": {0: ["Paris"], 1: ["H2O", "water"]}}
    result = evaluate("fill_in_blank", {"blanks": {"0": "  paris ", "1": "WATER"}}, key)
    assert result.correct is True
    partial = evaluate("fill_in_blank", {"blanks": {"0": "Lyon", "1": "h2o"}}, key)
    assert (partial.correct, partial.partial_score) == (False, 0.5)


def test_fill_in_blank_empty_answer_does_not_match():
    result = evaluate("fill_in_blank", {"blanks": {"0": "   "}}, {"blanks": {"0": ["x"]}})
    assert result.partial_score == 0.0


def test_drag_and_drop_proportional_credit():
    key = {"zones": {"mammals": ["cat", "dog"], "birds": ["owl", "hawk"]}}
    result = evaluate(
        "drag_and_drop",
        {"zones": {"mammals": ["cat", "owl"], "birds": ["dog", "hawk"]}},
        key,
    )
    assert result.correct is False
    assert result.partial_score == pytest.approx(0.5)
    full = evaluate("drag_and_drop", {"zones": {"mammals": ["dog", "cat"], "birds": ["hawk", "owl"]}}, key)
    assert (full.correct, full.partial_score) == (True, 1.0)


def test_drag_and_drop_item_in_two_zones_is_misplaced():
    key = {"zones": {"z1": ["a"], "z2": ["b"]}}
    result = evaluate("drag_and_drop", {"zones": {"z1": ["a", "b"], "z2": ["b"]}}, key)
    assert result.partial_score == pytest.approx(0.5)
    assert result.correct is False


def test_drag_and_drop_unknown_item_blocks_full_credit():
    key = {"zones": {"z1": ["a"]}}
    result = evaluate("drag_and_drop", {"zones": {"z1": ["a", "zzz"]}}, key)
    assert result.correct is False
    assert result.partial_score == 1.0


def test_pair_association_null_pair_costs_only_that_pair():
    key = {"pairs": {"l1": "r1", "l2": "r2"}}
    result = evaluate("pair_association", {"pairs": {"l1": "r1", "l2": None}}, key)
    assert (result.correct, result.partial_score) == (False, 0.5)


def test_fill_in_blank_null_blank_keeps_other_credit():
    key = {"blanks": {0: ["Paris"], 1: ["Seine"]}}
    result = evaluate("fill_in_blank", {"blanks": {"0": "Paris", "1": None}}, key)
    assert (result.correct, result.partial_score) == (False, 0.5)


def test_fill_in_blank_numeric_answer_matches_text():
    result = evaluate("fill_in_blank", {"blanks": {"0": 42}}, {"blanks": {"0": ["42"]}})
    assert (result.correct, result.partial_score) == (True, 1.0)


def test_drag_and_drop_null_zone_keeps_other_placements():
    key = {"zones": {"z1": ["a"], "z2": ["b"]}}
    result = evaluate("drag_and_drop", {"zones": {"z1": ["a", None], "z2": None}}, key)
    assert (result.correct, result.partial_score) == (False, 0.5)
    numeric = evaluate("drag_and_drop", {"zones": {"z1": [7]}}, {"zones": {"z1": ["7"]}})
    assert numeric.correct


def test_hotspot_region_bounds_are_inclusive():
    key = {"regions": [{"x": 10, "y": 10, "width": 20, "height": 5}]}
    assert evaluate("hotspot", {"x": 30, "y": 15}, key).correct
    assert evaluate("hotspot", {"x": 15, "y": 12}, key).correct
    assert not evaluate("hotspot", {"x": 31, "y": 12}, key).correct


def test_command_defaults_to_case_insensitive():
    key = {"accepted": ["git status"]}
    assert evaluate("command", {"command": "  GIT STATUS "}, key).correct
    assert not evaluate("command", {"command": "git  status"}, key).correct


def test_command_flags_from_question_config():
    key = {"accepted": ["ls -la"]}
    assert not evaluate("command", {"command": "LS -LA"}, key, config={"case_sensitive": True}).correct
    assert evaluate("command", {"command": "ls    -la"}, key, config={"collapse_whitespace": True}).correct


def test_command_blank_input_scores_zero():
    result = evaluate("command", {"command": "   "}, {"accepted": ["pwd"]})
    assert (result.correct, result.partial_score) == (False, 0.0)


@pytest.mark.parametrize("payload", [None, {}, "B", 42, {"selected": ["B"]}, {"wrong": "shape"}])
def test_malformed_payload_scores_blank(payload):
    result = evaluate("single_choice", payload, {"correct_option": "B"})
    assert (result.correct, result.partial_score) == (False, 0.0)


def test_malformed_answer_key_is_rejected():
    with pytest.raises(ValidationError):
        evaluate("multi_choice", {"selected": ["A"]}, {"correct_options": []})


def test_every_type_has_a_submission_shape():
    for qtype in QuestionType:
        assert parse_submission(qtype, None) is None
