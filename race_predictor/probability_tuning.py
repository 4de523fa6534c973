"""Calibration feedback loop: adjusts signal weights from recent results.

Runs after every recorded round once there are enough rounds. Looks at the
last CALIBRATION_WINDOW rounds and:
  1. Measures accuracy, mean log-loss, and calibration error
     (mean stated confidence - accuracy).
  2. If calibration error exceeds the tolerance, scales every weight by
     0.95 (overconfident) or 1.05 (underconfident).
  3. Otherwise, if the newest round was a wrong high-confidence call,
     nudges only the odds or historical-win-rate weight, whichever signal
     drove the call.
  4. Renormalizes the weight mass and floors every weight.
  5. Adapts the learning rate from accuracy.

The pass is keyed on the newest round id, so re-running it on unchanged
history leaves the state untouched.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from race_predictor.memory.state import CalibrationSnapshot, LearnedState, SignalWeights
from race_predictor.probability import SIGNAL_REGISTRY
from race_predictor.rounds import RoundRecord

logger = logging.getLogger(__name__)

MIN_ROUNDS_FOR_CALIBRATION = 5
CALIBRATION_WINDOW = 10

PROBABILITY_FLOOR = 0.001
PROBABILITY_CEILING = 0.999

# Global correction
CALIBRATION_TOLERANCE = 0.10
OVERCONFIDENT_FACTOR = 0.95
UNDERCONFIDENT_FACTOR = 1.05

# Per-signal correction
HIGH_CONFIDENCE = 60.0  # stated confidence (0-100) that counts as a strong call

# Weight mass bounds
WEIGHT_FLOOR = 0.05
MIN_TOTAL_WEIGHT = 1.0
MAX_TOTAL_WEIGHT = 3.0
TARGET_TOTAL_WEIGHT = 2.0

# Learning rate
MIN_LEARNING_RATE = 0.001
MAX_LEARNING_RATE = 0.1
LOW_ACCURACY = 0.5
HIGH_ACCURACY = 0.7
SPEED_UP = 1.25
SLOW_DOWN = 0.8


@dataclass
class CalibrationReport:
    """What a feedback pass measured and changed."""

    applied: bool
    reason: str
    rounds_evaluated: int = 0
    accuracy: float = 0.0
    log_loss: float = 0.0
    calibration_error: float = 0.0
    rule: str = "none"
    old_weights: dict[str, float] = field(default_factory=dict)
    new_weights: dict[str, float] = field(default_factory=dict)
    learning_rate: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "reason": self.reason,
            "rounds_evaluated": self.rounds_evaluated,
            "accuracy": round(self.accuracy, 4),
            "log_loss": round(self.log_loss, 4),
            "calibration_error": round(self.calibration_error, 4),
            "rule": self.rule,
            "old_weights": {k: round(v, 4) for k, v in self.old_weights.items()},
            "new_weights": {k: round(v, 4) for k, v in self.new_weights.items()},
            "learning_rate": self.learning_rate,
        }


# ──────────────────────────────────────────────
# Metrics over the window
# ──────────────────────────────────────────────

def recent_window(history: Sequence[RoundRecord], window: int = CALIBRATION_WINDOW) -> list[RoundRecord]:
    ordered = sorted(history, key=lambda r: r.timestamp)
    return ordered[-window:] if window > 0 else []


def calculate_recent_accuracy(rounds: Sequence[RoundRecord]) -> float:
    """Fraction of rounds where the predicted winner won."""
    if not rounds:
        return 0.0
    return sum(1 for r in rounds if r.is_correct) / len(rounds)


def calculate_log_loss(rounds: Sequence[RoundRecord]) -> float:
    """Mean -ln(p) of the actual winner, p clamped to [0.001, 0.999]."""
    if not rounds:
        return 0.0
    total = 0.0
    for r in rounds:
        p = r.predicted_probabilities.get(r.actual_winner, 0.0)
        p = max(PROBABILITY_FLOOR, min(PROBABILITY_CEILING, p))
        total += -math.log(p)
    return total / len(rounds)


def calculate_calibration_error(rounds: Sequence[RoundRecord]) -> float:
    """Mean stated confidence (as 0-1) minus accuracy. Positive = overconfident."""
    if not rounds:
        return 0.0
    mean_confidence = sum(r.confidence for r in rounds) / len(rounds) / 100.0
    return mean_confidence - calculate_recent_accuracy(rounds)


# ──────────────────────────────────────────────
# Weight rules
# ──────────────────────────────────────────────

def apply_global_correction(
    weights: SignalWeights, calibration_error: float,
) -> tuple[SignalWeights, Optional[str]]:
    """Scale all weights uniformly when calibration error is out of tolerance."""
    if abs(calibration_error) <= CALIBRATION_TOLERANCE:
        return weights, None
    factor = OVERCONFIDENT_FACTOR if calibration_error > 0 else UNDERCONFIDENT_FACTOR
    return weights.scaled(factor), "global"


def _market_favourite(record: RoundRecord) -> Optional[str]:
    implied = record.implied_probabilities or {
        c.candidate_id: c.implied_probability for c in record.candidates
    }
    if not implied:
        return None
    return max(implied, key=implied.get)


def attribute_wrong_call(
    record: RoundRecord, weights: SignalWeights, learning_rate: float,
) -> tuple[SignalWeights, Optional[str]]:
    """Nudge only the signal responsible for a wrong high-confidence call.

    - Picked the market favourite and lost: odds weight down.
    - Overrode the market and lost: historical win-rate weight down, and
      odds weight up if the favourite actually won.
    """
    if record.is_correct or record.confidence < HIGH_CONFIDENCE:
        return weights, None

    favourite = _market_favourite(record)
    values = weights.as_dict()
    if record.predicted_winner == favourite:
        values["odds"] *= 1 - learning_rate
    else:
        values["historical_win_rate"] *= 1 - learning_rate
        if record.actual_winner == favourite:
            values["odds"] *= 1 + learning_rate
    return SignalWeights(**values), "per_signal"


def renormalize_weights(weights: SignalWeights) -> SignalWeights:
    """Floor every weight, then pull the total back to target if out of bounds."""
    values = {k: max(WEIGHT_FLOOR, v) for k, v in weights.as_dict().items()}
    total = sum(values.values())
    if total > MAX_TOTAL_WEIGHT or total < MIN_TOTAL_WEIGHT:
        scale = TARGET_TOTAL_WEIGHT / total
        values = {k: max(WEIGHT_FLOOR, v * scale) for k, v in values.items()}
        logger.info("Signal weights renormalized: total %.3f -> %.3f", total, sum(values.values()))
    return SignalWeights(**values)


def adapt_learning_rate(learning_rate: float, accuracy: float) -> float:
    """Adapt faster when struggling, slower when doing well."""
    if accuracy < LOW_ACCURACY:
        learning_rate *= SPEED_UP
    elif accuracy > HIGH_ACCURACY:
        learning_rate *= SLOW_DOWN
    return max(MIN_LEARNING_RATE, min(MAX_LEARNING_RATE, learning_rate))


def _biggest_change(old: dict[str, float], new: dict[str, float]) -> str:
    """Format the biggest weight change for logging."""
    max_key = ""
    max_delta = 0.0
    for k in old:
        delta = abs(new.get(k, 0) - old.get(k, 0))
        if delta > max_delta:
            max_delta = delta
            max_key = k
    if not max_key:
        return "none"
    direction = "+" if new.get(max_key, 0) > old.get(max_key, 0) else "-"
    label = SIGNAL_REGISTRY.get(max_key, {}).get("label", max_key)
    return f"{label} {direction}{max_delta:.3f}"


# ──────────────────────────────────────────────
# Main entry point
# ──────────────────────────────────────────────

def apply_feedback(
    history: Sequence[RoundRecord],
    state: LearnedState,
    window: int = CALIBRATION_WINDOW,
) -> tuple[LearnedState, CalibrationReport]:
    """Run one feedback pass over the history.

    Returns the updated state (a new object; `state` is not mutated) and a
    report. Skipped passes return `state` itself.
    """
    if len(history) < MIN_ROUNDS_FOR_CALIBRATION:
        logger.debug("Calibration skipped: only %d/%d rounds", len(history), MIN_ROUNDS_FOR_CALIBRATION)
        return state, CalibrationReport(
            applied=False,
            reason=f"Need at least {MIN_ROUNDS_FOR_CALIBRATION} rounds",
        )

    rounds = recent_window(history, window)
    newest = rounds[-1]
    if state.last_calibrated_round_id == newest.id:
        logger.debug("Calibration skipped: round %s already applied", newest.id)
        return state, CalibrationReport(applied=False, reason="Already calibrated on this history")

    accuracy = calculate_recent_accuracy(rounds)
    log_loss = calculate_log_loss(rounds)
    calibration_error = calculate_calibration_error(rounds)

    old_weights = state.signal_weights
    weights, rule = apply_global_correction(old_weights, calibration_error)
    if rule is None:
        weights, rule = attribute_wrong_call(newest, weights, state.learning_rate)
    weights = renormalize_weights(weights)

    learning_rate = adapt_learning_rate(state.learning_rate, accuracy)
    rule = rule or "none"

    report = CalibrationReport(
        applied=True,
        reason="Calibrated",
        rounds_evaluated=len(rounds),
        accuracy=accuracy,
        log_loss=log_loss,
        calibration_error=calibration_error,
        rule=rule,
        old_weights=old_weights.as_dict(),
        new_weights=weights.as_dict(),
        learning_rate=learning_rate,
    )

    new_state = replace(
        state,
        signal_weights=weights,
        learning_rate=learning_rate,
        current_log_loss=log_loss,
        last_calibrated_round_id=newest.id,
        last_calibration=CalibrationSnapshot(
            rounds_evaluated=len(rounds),
            accuracy=accuracy,
            log_loss=log_loss,
            calibration_error=calibration_error,
            rule=rule,
        ),
    )

    if rule != "none":
        logger.info(
            "Signal weights calibrated (%s rule, %d rounds, error %+.3f, log-loss %.3f). "
            "Biggest change: %s",
            rule, len(rounds), calibration_error, log_loss,
            _biggest_change(report.old_weights, report.new_weights),
        )
    return new_state, report
