"""
Tests for the rubric engine: per-criterion rules, the weight-sum rule,
live weight totals, score checks and the weighted score.
"""
import pytest
from factories import make_rubric

from milestone_engine.errors import ValidationError
from milestone_engine.models import RubricCriterion
from milestone_engine.rubric import (
    RUBRIC_WEIGHT_ERROR,
    rubric_result,
    validate_rubric,
    validate_scores,
    weight_total,
    weighted_score,
)


def _criteria(weights=(60, 40), max_score=10) -> list[RubricCriterion]:
    return [RubricCriterion.model_validate(c) for c in make_rubric(weights, max_score)]


class TestWeightSum:
    def test_even_split_is_valid(self):
        assert validate_rubric(_criteria((50, 50))) == {}

    def test_short_of_hundred(self):
        assert validate_rubric(_criteria((50, 40))) == {"rubricWeight": RUBRIC_WEIGHT_ERROR}

    def test_over_hundred(self):
        assert "rubricWeight" in validate_rubric(_criteria((60, 50)))

    def test_fractional_thirds_within_tolerance(self):
        assert validate_rubric(_criteria((33.33, 33.33, 33.34))) == {}

    def test_outside_tolerance(self):
        assert "rubricWeight" in validate_rubric(_criteria((33.3, 33.3, 33.3)))

    def test_empty_rubric_is_valid(self):
        assert validate_rubric([]) == {}

    def test_weight_total_running_sum(self):
        assert weight_total(_criteria((25, 30))) == pytest.approx(55.0)
        assert weight_total([]) == 0


class TestCriterionRules:
    def test_blank_criterion_and_description(self):
        c = RubricCriterion(criterion=" ", weight=100, max_score=5, description="")
        errors = validate_rubric([c])
        assert errors["rubric_0_criterion"] == "Criterion name is required"
        assert errors["rubric_0_description"] == "Criterion description is required"

    @pytest.mark.parametrize("weight", [0, -5, 100.5])
    def test_weight_out_of_range(self, weight):
        c = RubricCriterion(criterion="A", weight=weight, max_score=5, description="d")
        assert "rubric_0_weight" in validate_rubric([c])

    def test_max_score_must_be_positive(self):
        c = RubricCriterion(criterion="A", weight=100, max_score=0, description="d")
        assert validate_rubric([c]) == {"rubric_0_maxScore": "Max score must be greater than 0"}

    def test_rule_codes(self):
        bad = [
            RubricCriterion(criterion="", weight=50, max_score=5, description="d"),
            RubricCriterion(criterion="B", weight=20, max_score=5, description="d"),
        ]
        codes = {v.field: v.code for v in rubric_result(bad).violations}
        assert codes == {"rubric_0_criterion": "V-04", "rubricWeight": "V-05"}

    def test_criterion_too_long(self):
        c = RubricCriterion(criterion="x" * 101, weight=100, max_score=5, description="d")
        assert "rubric_0_criterion" in validate_rubric([c])


class TestScoring:
    def test_weighted_score(self):
        # 60 × 8/10 + 40 × 5/10
        assert weighted_score(_criteria((60, 40)), [8, 5]) == pytest.approx(68.0)

    def test_perfect_score_is_hundred(self):
        assert weighted_score(_criteria((60, 40), max_score=4), [4, 4]) == pytest.approx(100.0)

    def test_rounded_to_two_places(self):
        assert weighted_score(_criteria((50, 50), max_score=3), [1, 0]) == pytest.approx(16.67)

    def test_empty_rubric_scores_zero(self):
        assert weighted_score([], []) == 0

    def test_score_count_mismatch(self):
        assert "scores" in validate_scores(_criteria(), [5])

    def test_score_above_max(self):
        errors = validate_scores(_criteria(), [11, 5])
        assert errors == {"score_0": "Score must be between 0 and 10"}

    def test_non_numeric_score(self):
        assert "score_1" in validate_scores(_criteria(), [5, "7"])

    def test_weighted_score_rejects_invalid_rubric(self):
        with pytest.raises(ValidationError) as exc:
            weighted_score(_criteria((50, 40)), [5, 5])
        assert "rubricWeight" in exc.value.errors

    def test_weighted_score_rejects_bad_scores(self):
        with pytest.raises(ValidationError):
            weighted_score(_criteria(), [-1, 5])
