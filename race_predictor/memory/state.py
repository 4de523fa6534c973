"""Learned state: signal weights plus the per-candidate snapshot.

Persisted as versioned JSON. A blob written by any other schema version is
discarded and replaced with defaults; there is no cross-version migration.
"""

import json
import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Optional

from race_predictor.errors import CorruptPersistedState
from race_predictor.stats import CandidateStats, VarianceEntry

STORAGE_VERSION = "5.0"

DEFAULT_LEARNING_RATE = 0.02
DEFAULT_RECENT_WINDOW = 20
DEFAULT_STRATEGY = "Balanced"


@dataclass
class SignalWeights:
    """Non-negative weight per scoring signal. Default total is 2.0."""

    odds: float = 0.60
    historical_win_rate: float = 0.30
    recent_form: float = 0.30
    win_streak: float = 0.20
    placer_streak: float = 0.10
    lower_streak: float = 0.10
    momentum: float = 0.25
    odds_movement: float = 0.15

    @classmethod
    def keys(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())

    def scaled(self, factor: float) -> "SignalWeights":
        return SignalWeights(**{k: v * factor for k, v in self.as_dict().items()})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignalWeights":
        values = {}
        for key in cls.keys():
            if key not in data:
                raise CorruptPersistedState(f"Signal weight '{key}' missing")
            value = float(data[key])
            if not math.isfinite(value) or value < 0:
                raise CorruptPersistedState(f"Signal weight '{key}' is invalid: {value}")
            values[key] = value
        return cls(**values)


@dataclass
class CalibrationSnapshot:
    """Summary of the most recent feedback pass."""

    rounds_evaluated: int = 0
    accuracy: float = 0.0
    log_loss: float = 0.0
    calibration_error: float = 0.0
    rule: str = "none"  # none | global | per_signal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CalibrationSnapshot":
        return cls(**{f.name: data[f.name] for f in fields(cls) if f.name in data})


@dataclass
class LearnedState:
    """The single process-wide learned snapshot for a user/device."""

    contender_stats: dict[str, CandidateStats] = field(default_factory=dict)
    variance_data: dict[str, VarianceEntry] = field(default_factory=dict)
    signal_weights: SignalWeights = field(default_factory=SignalWeights)
    current_log_loss: Optional[float] = None
    learning_rate: float = DEFAULT_LEARNING_RATE
    selected_strategy: str = DEFAULT_STRATEGY
    total_bet_amount: float = 0.0
    total_payout: float = 0.0
    recent_window_size: int = DEFAULT_RECENT_WINDOW
    total_rounds: int = 0
    correct_predictions: int = 0
    last_calibrated_round_id: Optional[str] = None
    last_calibration: Optional[CalibrationSnapshot] = None

    def stats_for(self, candidate_id: str) -> CandidateStats:
        return self.contender_stats.get(candidate_id) or CandidateStats()

    def variance_for(self, candidate_id: str) -> VarianceEntry:
        return self.variance_data.get(candidate_id) or VarianceEntry()

    def to_dict(self) -> dict[str, Any]:
        return {
            "contender_stats": {k: v.to_dict() for k, v in self.contender_stats.items()},
            "variance_data": {k: v.to_dict() for k, v in self.variance_data.items()},
            "signal_weights": self.signal_weights.as_dict(),
            "current_log_loss": self.current_log_loss,
            "learning_rate": self.learning_rate,
            "selected_strategy": self.selected_strategy,
            "total_bet_amount": self.total_bet_amount,
            "total_payout": self.total_payout,
            "recent_window_size": self.recent_window_size,
            "total_rounds": self.total_rounds,
            "correct_predictions": self.correct_predictions,
            "last_calibrated_round_id": self.last_calibrated_round_id,
            "last_calibration": self.last_calibration.to_dict() if self.last_calibration else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LearnedState":
        """Strict decode of a current-version payload.

        Raises CorruptPersistedState on any missing or malformed field.
        """
        try:
            last_cal = data.get("last_calibration")
            return cls(
                contender_stats={
                    k: CandidateStats.from_dict(v) for k, v in data["contender_stats"].items()
                },
                variance_data={
                    k: VarianceEntry.from_dict(v) for k, v in data["variance_data"].items()
                },
                signal_weights=SignalWeights.from_dict(data["signal_weights"]),
                current_log_loss=data.get("current_log_loss"),
                learning_rate=float(data["learning_rate"]),
                selected_strategy=str(data["selected_strategy"]),
                total_bet_amount=float(data["total_bet_amount"]),
                total_payout=float(data["total_payout"]),
                recent_window_size=int(data["recent_window_size"]),
                total_rounds=int(data.get("total_rounds", 0)),
                correct_predictions=int(data.get("correct_predictions", 0)),
                last_calibrated_round_id=data.get("last_calibrated_round_id"),
                last_calibration=CalibrationSnapshot.from_dict(last_cal) if last_cal else None,
            )
        except CorruptPersistedState:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptPersistedState(f"Learned state has an unexpected shape: {e}") from e


def default_learned_state(
    recent_window_size: int = DEFAULT_RECENT_WINDOW,
    selected_strategy: str = DEFAULT_STRATEGY,
) -> LearnedState:
    return LearnedState(recent_window_size=recent_window_size, selected_strategy=selected_strategy)


def encode_learned_state(state: LearnedState) -> bytes:
    payload = {"version": STORAGE_VERSION, "state": state.to_dict()}
    return json.dumps(payload, sort_keys=True).encode("utf-8")


def decode_learned_state(blob: bytes) -> LearnedState:
    """Decode a stored blob, raising CorruptPersistedState if unusable."""
    try:
        payload = json.loads(blob.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptPersistedState(f"Learned state is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise CorruptPersistedState("Learned state payload is not an object")
    return migrate_learned_state(payload.get("version"), payload.get("state"))


def migrate_learned_state(stored_version: Optional[str], stored: Any) -> LearnedState:
    """(stored_version, blob) -> LearnedState.

    Only the current version is accepted; anything else is reported as
    corrupt so the caller resets to defaults.
    """
    if stored_version != STORAGE_VERSION:
        raise CorruptPersistedState(
            f"Learned state version {stored_version!r} does not match {STORAGE_VERSION!r}"
        )
    if not isinstance(stored, dict):
        raise CorruptPersistedState("Learned state body is not an object")
    return LearnedState.from_dict(stored)
