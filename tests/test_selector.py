"""Tests for stochastic selection."""

import math

import pytest

from rotafair.domain.models import WarningType
from rotafair.scheduling.priority import PriorityScore
from rotafair.scheduling.random_source import (
    NumpyRandomSource,
    SequenceRandomSource,
    sample_gumbel,
)
from rotafair.scheduling.selector import (
    StochasticSelector,
    adaptive_temperature,
    apply_diversity_penalty,
    selection_entropy,
)


def create_test_scores(values: dict[str, float]) -> dict[str, PriorityScore]:
    """Helper to build scores from id -> priority."""
    return {
        entity_id: PriorityScore(
            entity_id=entity_id,
            value=value,
            base_priority=value,
            presence_days=30,
        )
        for entity_id, value in values.items()
    }


@pytest.fixture
def scores():
    return create_test_scores({"A": 50.0, "B": 40.0, "C": 30.0, "D": 20.0, "E": 10.0})


class TestRandomSource:
    """Tests for random sources and Gumbel sampling."""

    def test_seeded_sources_repeat(self):
        first = NumpyRandomSource(seed=11)
        second = NumpyRandomSource(seed=11)
        assert [first.next_float() for _ in range(5)] == [
            second.next_float() for _ in range(5)
        ]

    def test_sequence_source_cycles(self):
        source = SequenceRandomSource([0.1, 0.2])
        assert [source.next_float() for _ in range(3)] == [0.1, 0.2, 0.1]

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValueError):
            SequenceRandomSource([])

    def test_gumbel_inverse_transform(self):
        value = sample_gumbel(SequenceRandomSource([0.5]))
        assert value == pytest.approx(-math.log(-math.log(0.5)))

    def test_gumbel_handles_edges(self):
        assert math.isfinite(sample_gumbel(SequenceRandomSource([0.0])))
        assert math.isfinite(sample_gumbel(SequenceRandomSource([1.0])))


class TestRank:
    """Tests for StochasticSelector.rank."""

    def test_zero_temperature_is_priority_order(self, scores):
        selector = StochasticSelector(SequenceRandomSource([0.5]))
        assert selector.rank(scores, scores) == ["A", "B", "C", "D", "E"]

    def test_zero_temperature_draws_nothing(self, scores):
        source = SequenceRandomSource([0.5])
        StochasticSelector(source).rank(scores, scores, temperature=0.0)
        assert source.next_float() == 0.5

    def test_exclusions_removed_before_ranking(self, scores):
        selector = StochasticSelector()
        ranking = selector.rank(scores, scores, excluded={"A", "C"})
        assert ranking == ["B", "D", "E"]

    def test_noise_can_reorder(self):
        scores = create_test_scores({"A": 10.0, "B": 9.0})
        # A draws first (higher priority), B second
        selector = StochasticSelector(SequenceRandomSource([0.01, 0.99]))
        assert selector.rank(scores, scores, temperature=1.0) == ["B", "A"]

    def test_never_assigned_class_kept_under_noise(self):
        scores = create_test_scores({"A": 500.0, "B": 1.0})
        scores["B"].never_assigned = True
        selector = StochasticSelector(SequenceRandomSource([0.99, 0.01]))
        assert selector.rank(scores, scores, temperature=5.0)[0] == "B"

    def test_input_order_does_not_matter(self, scores):
        forward = StochasticSelector(NumpyRandomSource(3)).rank(
            ["A", "B", "C", "D", "E"], scores, temperature=0.5
        )
        backward = StochasticSelector(NumpyRandomSource(3)).rank(
            ["E", "D", "C", "B", "A"], scores, temperature=0.5
        )
        assert forward == backward


class TestSelect:
    """Tests for StochasticSelector.select."""

    def test_primaries_then_substitutes(self, scores):
        result = StochasticSelector().select(scores, scores, 2, 2)
        assert result.primary_ids == ["A", "B"]
        assert result.substitute_ids == ["C", "D"]
        assert result.warnings == []

    def test_same_seed_same_selection(self, scores):
        first = StochasticSelector(NumpyRandomSource(42)).select(
            scores, scores, 2, 2, temperature=0.8
        )
        second = StochasticSelector(NumpyRandomSource(42)).select(
            scores, scores, 2, 2, temperature=0.8
        )
        assert first.primary_ids == second.primary_ids
        assert first.substitute_ids == second.substitute_ids

    def test_small_pool_warns(self):
        scores = create_test_scores({"A": 5.0})
        result = StochasticSelector().select(scores, scores, 2, 2, period_index=4)
        assert result.primary_ids == ["A"]
        assert result.substitute_ids == []
        types = [w.warning_type for w in result.warnings]
        assert WarningType.TEAM_UNDERSIZED in types
        assert WarningType.SUBSTITUTES_SHORT in types
        assert all(w.period_index == 4 for w in result.warnings)

    def test_excluded_never_selected(self, scores):
        result = StochasticSelector(NumpyRandomSource(1)).select(
            scores, scores, 2, 2, excluded={"A", "B"}, temperature=2.0
        )
        chosen = set(result.primary_ids) | set(result.substitute_ids)
        assert not chosen & {"A", "B"}


class TestSelectionEntropy:
    """Tests for selection_entropy."""

    def test_equal_priorities_are_maximal(self):
        scores = create_test_scores({"A": 5.0, "B": 5.0, "C": 5.0})
        assert selection_entropy(scores.values(), 0.5) == pytest.approx(1.0)

    def test_dominant_candidate_is_near_zero(self):
        scores = create_test_scores({"A": 1000.0, "B": 1.0, "C": 1.0})
        assert selection_entropy(scores.values(), 0.05) < 0.01

    def test_degenerate_inputs(self, scores):
        assert selection_entropy(scores.values(), 0.0) == 0.0
        assert selection_entropy(create_test_scores({"A": 3.0}).values(), 1.0) == 0.0

    def test_higher_temperature_raises_entropy(self, scores):
        cold = selection_entropy(scores.values(), 0.1)
        warm = selection_entropy(scores.values(), 1.0)
        assert cold < warm <= 1.0


class TestAdaptiveTemperature:
    """Tests for adaptive_temperature."""

    def test_even_rates_keep_base(self):
        assert adaptive_temperature(1.0, 0.0) == pytest.approx(1.0)

    def test_spread_cools(self):
        assert adaptive_temperature(1.0, 0.1) == pytest.approx(0.5)

    def test_converging_heats(self):
        assert adaptive_temperature(1.0, 0.0, converging=True) == pytest.approx(1.2)

    def test_low_entropy_heats(self):
        assert adaptive_temperature(1.0, 0.0, entropy=0.25) == pytest.approx(2.0)
        assert adaptive_temperature(1.0, 0.0, entropy=0.0) == pytest.approx(5.0)

    def test_clamped(self):
        assert adaptive_temperature(0.1, 100.0, minimum=0.05) == pytest.approx(0.05)
        assert adaptive_temperature(4.5, 0.0, converging=True, maximum=5.0) == 5.0

    def test_negative_variance_treated_as_zero(self):
        assert adaptive_temperature(0.3, -1.0) == pytest.approx(0.3)


class TestDiversityPenalty:
    """Tests for apply_diversity_penalty."""

    def test_recent_selections_decay_with_age(self, scores):
        penalized = apply_diversity_penalty(
            scores, [("A", "B"), ("A", "C")], weight=0.2, window=5
        )
        # A: 1.0 (latest) + 0.5 (older), C: 1.0, B: 0.5
        assert penalized["A"].diversity_factor == pytest.approx(math.exp(-0.3))
        assert penalized["C"].diversity_factor == pytest.approx(math.exp(-0.2))
        assert penalized["B"].diversity_factor == pytest.approx(math.exp(-0.1))
        assert penalized["D"] is scores["D"]
        assert penalized["A"].value == pytest.approx(50.0 * math.exp(-0.3))

    def test_window_limits_history(self, scores):
        penalized = apply_diversity_penalty(
            scores, [("A", "B"), ("C", "D")], weight=0.5, window=1
        )
        assert penalized["A"] is scores["A"]
        assert penalized["C"].diversity_factor == pytest.approx(math.exp(-0.5))

    def test_zero_weight_is_a_no_op(self, scores):
        penalized = apply_diversity_penalty(scores, [("A", "B")], weight=0.0)
        assert penalized == scores
        assert penalized is not scores

    def test_input_scores_untouched(self, scores):
        apply_diversity_penalty(scores, [("A",)], weight=1.0)
        assert scores["A"].value == 50.0
        assert scores["A"].diversity_factor == 1.0

    def test_penalty_can_change_ranking(self, scores):
        selector = StochasticSelector(SequenceRandomSource([0.5]))
        penalized = apply_diversity_penalty(scores, [("A", "B")], weight=1.0)
        ranking = selector.rank(scores, penalized, temperature=0.0)
        assert ranking[:3] == ["C", "D", "A"]
