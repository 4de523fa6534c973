"""Tests for quarter-Kelly stake recommendations."""

import pytest

from race_predictor.betting.sizing import calculate_bet_size


class TestCalculateBetSize:
    def test_skip_flag_means_no_stake(self):
        rec = calculate_bet_size(0.6, 0.3, skip_flag=True)
        assert rec.amount == 0
        assert "skipping" in rec.explanation

    @pytest.mark.parametrize("confidence,implied", [(0.3, 0.3), (0.2, 0.4)])
    def test_no_positive_edge(self, confidence, implied):
        rec = calculate_bet_size(confidence, implied)
        assert rec.amount == 0
        assert "No positive edge" in rec.explanation

    def test_quarter_kelly(self):
        # edge 0.2 / (1 - 0.5) * 10000 * 0.25
        rec = calculate_bet_size(0.5, 0.3, bankroll_unit=10_000)
        assert rec.amount == 1000
        assert rec.edge == pytest.approx(0.2)
        assert "Moderate edge" in rec.explanation

    def test_agreement_scales_stake(self):
        assert calculate_bet_size(0.5, 0.3, signal_agreement=0.5).amount == 500

    def test_mixed_signals_note(self):
        rec = calculate_bet_size(0.5, 0.3, signal_agreement=0.3)
        assert rec.amount == 300
        assert rec.explanation.startswith("Small edge")
        assert rec.explanation.endswith("Stake reduced due to mixed signals.")

    def test_capped_at_maximum(self):
        rec = calculate_bet_size(0.95, 0.1)
        assert rec.amount == 10_000
        assert "Strong edge" in rec.explanation

    def test_tiny_edge_rounds_to_zero(self):
        rec = calculate_bet_size(0.31, 0.3)
        assert rec.amount == 0
        assert "too small" in rec.explanation

    def test_certain_confidence_does_not_divide_by_zero(self):
        assert calculate_bet_size(1.0, 0.5).amount == 10_000

    @pytest.mark.parametrize("confidence", [0.35, 0.42, 0.5, 0.61, 0.77, 0.9])
    def test_amount_is_bounded_multiple_of_100(self, confidence):
        amount = calculate_bet_size(confidence, 0.25, bankroll_unit=3_333).amount
        assert 0 <= amount <= 10_000
        assert amount % 100 == 0

    @pytest.mark.parametrize("kwargs", [
        {"confidence": float("nan"), "implied_probability": 0.2},
        {"confidence": 0.6, "implied_probability": float("nan")},
        {"confidence": float("inf"), "implied_probability": 0.2},
        {"confidence": 0.6, "implied_probability": 0.2, "signal_agreement": float("nan")},
    ])
    def test_non_finite_inputs_stake_nothing(self, kwargs):
        rec = calculate_bet_size(**kwargs)
        assert rec.amount == 0
        assert "not valid numbers" in rec.explanation
