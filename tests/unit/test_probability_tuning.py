"""Tests for the calibration feedback loop."""

import math

import pytest

from race_predictor.memory.state import LearnedState, SignalWeights
from race_predictor.probability_tuning import (
    MAX_TOTAL_WEIGHT,
    MIN_TOTAL_WEIGHT,
    WEIGHT_FLOOR,
    adapt_learning_rate,
    apply_feedback,
    calculate_calibration_error,
    calculate_log_loss,
    calculate_recent_accuracy,
    renormalize_weights,
)

DEFAULTS = SignalWeights().as_dict()


def _history(make_round, outcomes, confidence):
    """Rounds predicting "1"; True in `outcomes` means "1" won."""
    return [
        make_round("1" if won else "2", predicted="1", confidence=confidence)
        for won in outcomes
    ]


class TestMetrics:
    def test_accuracy(self, make_round):
        rounds = _history(make_round, [True, False, True, True], 50)
        assert calculate_recent_accuracy(rounds) == 0.75

    def test_calibration_error_sign(self, make_round):
        rounds = _history(make_round, [True, False], 90)
        assert calculate_calibration_error(rounds) == pytest.approx(0.4)

    def test_log_loss_clamps_zero_probability(self, make_round):
        r = make_round("2", predicted_probabilities={"1": 1.0, "2": 0.0})
        assert calculate_log_loss([r]) == pytest.approx(-math.log(0.001))

    def test_log_loss_clamps_certainty(self, make_round):
        r = make_round("1", predicted_probabilities={"1": 1.0})
        assert calculate_log_loss([r]) == pytest.approx(-math.log(0.999))

    def test_empty(self):
        assert calculate_recent_accuracy([]) == 0.0
        assert calculate_log_loss([]) == 0.0
        assert calculate_calibration_error([]) == 0.0


class TestApplyFeedback:
    def test_needs_five_rounds(self, make_round):
        state = LearnedState()
        new_state, report = apply_feedback(_history(make_round, [True] * 4, 90), state)
        assert new_state is state
        assert not report.applied

    def test_overconfident_scales_down(self, make_round):
        history = _history(make_round, [True, False] * 5, 90)
        new_state, report = apply_feedback(history, LearnedState())

        assert report.applied
        assert report.rule == "global"
        assert report.calibration_error == pytest.approx(0.4)
        for key, value in new_state.signal_weights.as_dict().items():
            assert value == pytest.approx(DEFAULTS[key] * 0.95)
        assert new_state.signal_weights.total == pytest.approx(1.9)
        assert new_state.learning_rate == pytest.approx(0.02)
        assert new_state.last_calibrated_round_id == history[-1].id
        assert new_state.last_calibration.rule == "global"

    def test_underconfident_scales_up(self, make_round):
        history = _history(make_round, [True] * 10, 20)
        new_state, report = apply_feedback(history, LearnedState())
        assert report.rule == "global"
        assert new_state.signal_weights.odds == pytest.approx(0.6 * 1.05)
        # accuracy 1.0 slows learning down
        assert new_state.learning_rate == pytest.approx(0.016)

    def test_idempotent_on_unchanged_history(self, make_round):
        history = _history(make_round, [True, False] * 5, 90)
        once, _ = apply_feedback(history, LearnedState())
        twice, report = apply_feedback(history, once)
        assert twice is once
        assert not report.applied

    def test_does_not_mutate_input(self, make_round):
        state = LearnedState()
        apply_feedback(_history(make_round, [True, False] * 5, 90), state)
        assert state.signal_weights == SignalWeights()
        assert state.last_calibrated_round_id is None

    def test_wrong_favourite_pick_lowers_odds_weight(self, make_round):
        history = _history(make_round, [True] * 6 + [False] * 4, 60)
        new_state, report = apply_feedback(history, LearnedState())
        assert report.rule == "per_signal"
        assert new_state.signal_weights.odds == pytest.approx(0.6 * 0.98)
        assert new_state.signal_weights.historical_win_rate == pytest.approx(0.3)
        assert new_state.learning_rate == pytest.approx(0.02)

    def test_wrong_override_lowers_history_raises_odds(self, make_round):
        history = _history(make_round, [True] * 7 + [False] * 2, 70)
        history.append(make_round("1", predicted="3", confidence=70))
        new_state, report = apply_feedback(history, LearnedState())
        assert report.rule == "per_signal"
        assert new_state.signal_weights.historical_win_rate == pytest.approx(0.3 * 0.98)
        assert new_state.signal_weights.odds == pytest.approx(0.6 * 1.02)

    def test_low_confidence_miss_changes_nothing(self, make_round):
        history = _history(make_round, [True] * 5 + [False] * 5, 50)
        new_state, report = apply_feedback(history, LearnedState())
        assert report.applied
        assert report.rule == "none"
        assert new_state.signal_weights == SignalWeights()

    def test_weights_stay_bounded_over_many_passes(self, make_round):
        history = _history(make_round, [False] * 60, 95)
        state = LearnedState()
        for end in range(5, len(history) + 1):
            state, _ = apply_feedback(history[:end], state)
            weights = state.signal_weights.as_dict()
            assert all(w >= WEIGHT_FLOOR for w in weights.values())
            assert MIN_TOTAL_WEIGHT <= sum(weights.values()) <= MAX_TOTAL_WEIGHT
            assert 0.001 <= state.learning_rate <= 0.1


class TestRenormalize:
    def test_floor_and_rescale_up(self):
        weights = SignalWeights(**{k: 0.01 for k in DEFAULTS})
        result = renormalize_weights(weights)
        assert result.total == pytest.approx(2.0)
        assert all(v == pytest.approx(0.25) for v in result.as_dict().values())

    def test_rescale_down(self):
        weights = SignalWeights(**{k: 1.0 for k in DEFAULTS})
        assert renormalize_weights(weights).total == pytest.approx(2.0)

    def test_in_bounds_untouched(self):
        assert renormalize_weights(SignalWeights()) == SignalWeights()


class TestLearningRate:
    def test_speeds_up_when_struggling(self):
        assert adapt_learning_rate(0.02, 0.3) == pytest.approx(0.025)

    def test_clamped(self):
        assert adapt_learning_rate(0.09, 0.1) == 0.1
        assert adapt_learning_rate(0.001, 0.9) == 0.001

    def test_steady_band(self):
        assert adapt_learning_rate(0.02, 0.6) == 0.02
