"""Performance metrics over recorded rounds: accuracy, ROI, Brier score, mood."""

from dataclasses import dataclass, field
from typing import Any, Sequence

from race_predictor.rounds import RoundRecord

RECENT_ROUNDS = 10

# Model mood thresholds on recent accuracy (%)
MOOD_HIGH = 60
MOOD_MEDIUM = 35

ACCURACY_LABELS = [
    (20, "Very low accuracy"),
    (40, "Low accuracy"),
    (60, "Medium accuracy"),
    (80, "Good accuracy"),
    (95, "Very good accuracy"),
]


@dataclass
class Metrics:
    total_rounds: int = 0
    correct_predictions: int = 0
    accuracy: int = 0            # %
    recent_accuracy: int = 0     # % over the last 10 rounds
    overall_roi: int = 0         # %
    total_bet_amount: float = 0.0
    total_payout: float = 0.0
    brier_score: float = 0.0
    strategy_roi: dict[str, int] = field(default_factory=dict)

    @property
    def calibration_score(self) -> float:
        """1 - Brier, higher is better."""
        return 1.0 - self.brier_score

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_rounds": self.total_rounds,
            "correct_predictions": self.correct_predictions,
            "accuracy": self.accuracy,
            "recent_accuracy": self.recent_accuracy,
            "overall_roi": self.overall_roi,
            "total_bet_amount": round(self.total_bet_amount, 2),
            "total_payout": round(self.total_payout, 2),
            "brier_score": round(self.brier_score, 4),
            "calibration_score": round(self.calibration_score, 4),
            "strategy_roi": dict(self.strategy_roi),
        }


@dataclass
class ModelMood:
    mood: str          # High | Medium | Low
    confidence: int    # recent accuracy %
    label: str


def _pct(numerator: float, denominator: float) -> int:
    return round(numerator / denominator * 100) if denominator else 0


def calculate_brier_score(history: Sequence[RoundRecord]) -> float:
    """Mean squared error of predicted probabilities over every candidate.

    Lower is better. Perfect = 0.0.
    """
    total = 0.0
    count = 0
    for r in history:
        for cid, prob in r.predicted_probabilities.items():
            outcome = 1.0 if cid == r.actual_winner else 0.0
            total += (prob - outcome) ** 2
            count += 1
    return total / count if count else 0.0


def calculate_strategy_roi(history: Sequence[RoundRecord]) -> dict[str, int]:
    """ROI % per strategy profile, only for strategies with stakes."""
    staked: dict[str, float] = {}
    returned: dict[str, float] = {}
    for r in history:
        if not r.bet:
            continue
        key = r.strategy_profile or "default"
        staked[key] = staked.get(key, 0.0) + r.bet.amount
        returned[key] = returned.get(key, 0.0) + r.bet.payout

    return {
        key: _pct(returned[key] - amount, amount)
        for key, amount in staked.items()
        if amount > 0
    }


def calculate_metrics(
    history: Sequence[RoundRecord],
    total_bet_amount: float = 0.0,
    total_payout: float = 0.0,
) -> Metrics:
    if not history:
        return Metrics()

    ordered = sorted(history, key=lambda r: r.timestamp)
    correct = sum(1 for r in ordered if r.is_correct)
    recent = ordered[-RECENT_ROUNDS:]
    recent_correct = sum(1 for r in recent if r.is_correct)

    return Metrics(
        total_rounds=len(ordered),
        correct_predictions=correct,
        accuracy=_pct(correct, len(ordered)),
        recent_accuracy=_pct(recent_correct, len(recent)),
        overall_roi=_pct(total_payout - total_bet_amount, total_bet_amount),
        total_bet_amount=total_bet_amount,
        total_payout=total_payout,
        brier_score=calculate_brier_score(ordered),
        strategy_roi=calculate_strategy_roi(ordered),
    )


def calculate_model_mood(history: Sequence[RoundRecord]) -> ModelMood:
    """Summarise recent form of the model itself."""
    recent = sorted(history, key=lambda r: r.timestamp)[-RECENT_ROUNDS:]
    if not recent:
        return ModelMood(mood="Medium", confidence=0, label="Not enough rounds recorded yet")

    accuracy = _pct(sum(1 for r in recent if r.is_correct), len(recent))
    if accuracy >= MOOD_HIGH:
        return ModelMood(mood="High", confidence=accuracy, label="Model is performing well")
    if accuracy >= MOOD_MEDIUM:
        return ModelMood(mood="Medium", confidence=accuracy, label="Model is performing adequately")
    return ModelMood(mood="Low", confidence=accuracy, label="Model is struggling")


def accuracy_label(accuracy: float) -> str:
    clamped = max(0.0, min(100.0, accuracy))
    for upper, label in ACCURACY_LABELS:
        if clamped < upper:
            return label
    return "Excellent accuracy"
