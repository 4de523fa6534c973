"""Round records: candidates, bets, and the immutable history entry for a round."""

import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from race_predictor.config import now_ms
from race_predictor.errors import (
    CorruptPersistedState,
    InvalidRoundComposition,
    OutOfRangeBet,
    ValidationResult,
)
from race_predictor.odds import OddsValue

FIELD_SIZE = 6
MIN_BET = 0
MAX_BET = 10_000

# Positions 4-6 are not recorded individually; a full podium implies the
# rest of the field finished "lower".
LOWER_POSITION = 4


def _require_map(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise CorruptPersistedState(f"Stored {what} is not an object")
    return data


def _float_map(data: Any, what: str) -> dict[str, float]:
    return {k: float(v) for k, v in _require_map(data or {}, what).items()}


@dataclass(frozen=True)
class Candidate:
    """One of the six runners in a round."""

    candidate_id: str
    lane_index: int
    odds: OddsValue

    @property
    def implied_probability(self) -> float:
        return self.odds.implied_probability

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate_id": self.candidate_id,
            "lane_index": self.lane_index,
            "odds": self.odds.to_dict(),
            "implied_probability": round(self.implied_probability, 6),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Candidate":
        data = _require_map(data, "candidate")
        return cls(
            candidate_id=str(data["candidate_id"]),
            lane_index=int(data["lane_index"]),
            odds=OddsValue.from_dict(data["odds"]),
        )


@dataclass(frozen=True)
class BetRecord:
    """A stake placed on one candidate, settled against the winner."""

    staked_candidate_id: str
    amount: float
    odds_at_stake: OddsValue
    outcome: str  # "win" | "loss"

    def __post_init__(self):
        if not math.isfinite(self.amount) or not (MIN_BET <= self.amount <= MAX_BET):
            raise OutOfRangeBet(f"Bet amount must be between {MIN_BET} and {MAX_BET:,}")
        if self.outcome not in ("win", "loss"):
            raise ValueError(f"Unknown bet outcome '{self.outcome}'")

    @classmethod
    def settle(cls, staked_candidate_id: str, amount: float,
               odds_at_stake: OddsValue, winner_id: str) -> "BetRecord":
        """Derive the bet record once the actual winner is known."""
        return cls(
            staked_candidate_id=staked_candidate_id,
            amount=float(amount),
            odds_at_stake=odds_at_stake,
            outcome="win" if staked_candidate_id == winner_id else "loss",
        )

    @property
    def payout(self) -> float:
        """Total return including stake (0 on a loss)."""
        if self.outcome != "win":
            return 0.0
        return self.amount * self.odds_at_stake.decimal_odds

    def to_dict(self) -> dict[str, Any]:
        return {
            "staked_candidate_id": self.staked_candidate_id,
            "amount": self.amount,
            "odds_at_stake": self.odds_at_stake.to_dict(),
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BetRecord":
        data = _require_map(data, "bet")
        return cls(
            staked_candidate_id=str(data["staked_candidate_id"]),
            amount=float(data["amount"]),
            odds_at_stake=OddsValue.from_dict(data["odds_at_stake"]),
            outcome=data["outcome"],
        )


@dataclass(frozen=True)
class RoundRecord:
    """One completed round. Created once when finalized, immutable after."""

    candidates: tuple[Candidate, ...]
    predicted_winner: str
    confidence: float  # 0-100
    first_place: str
    implied_probabilities: dict[str, float] = field(default_factory=dict)
    predicted_probabilities: dict[str, float] = field(default_factory=dict)
    second_place: Optional[str] = None
    third_place: Optional[str] = None
    margins: dict[str, float] = field(default_factory=dict)
    strategy_profile: Optional[str] = None
    bet: Optional[BetRecord] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int = field(default_factory=now_ms)

    @property
    def actual_winner(self) -> str:
        return self.first_place

    @property
    def is_correct(self) -> bool:
        return self.predicted_winner == self.first_place

    @property
    def candidate_ids(self) -> list[str]:
        return [c.candidate_id for c in self.candidates]

    @property
    def has_full_podium(self) -> bool:
        return bool(self.second_place and self.third_place)

    def candidate(self, candidate_id: str) -> Optional[Candidate]:
        for c in self.candidates:
            if c.candidate_id == candidate_id:
                return c
        return None

    def finishing_position(self, candidate_id: str) -> Optional[int]:
        """1/2/3 for the podium, 4 for the rest of a full podium, else None."""
        if candidate_id == self.first_place:
            return 1
        if candidate_id == self.second_place:
            return 2
        if candidate_id == self.third_place:
            return 3
        if self.has_full_podium and self.candidate(candidate_id) is not None:
            return LOWER_POSITION
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "candidates": [c.to_dict() for c in self.candidates],
            "predicted_winner": self.predicted_winner,
            "confidence": self.confidence,
            "first_place": self.first_place,
            "second_place": self.second_place,
            "third_place": self.third_place,
            "implied_probabilities": dict(self.implied_probabilities),
            "predicted_probabilities": dict(self.predicted_probabilities),
            "margins": dict(self.margins),
            "strategy_profile": self.strategy_profile,
            "bet": self.bet.to_dict() if self.bet else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RoundRecord":
        data = _require_map(data, "round")
        bet = data.get("bet")
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            candidates=tuple(Candidate.from_dict(c) for c in data["candidates"]),
            predicted_winner=str(data["predicted_winner"]),
            confidence=float(data["confidence"]),
            first_place=str(data["first_place"]),
            second_place=data.get("second_place"),
            third_place=data.get("third_place"),
            implied_probabilities=_float_map(data.get("implied_probabilities"), "implied_probabilities"),
            predicted_probabilities=_float_map(data.get("predicted_probabilities"), "predicted_probabilities"),
            margins=_float_map(data.get("margins"), "margins"),
            strategy_profile=data.get("strategy_profile"),
            bet=BetRecord.from_dict(bet) if bet else None,
        )


# ──────────────────────────────────────────────
# Validation
# ──────────────────────────────────────────────

def validate_candidates(candidates: Iterable[Candidate]) -> ValidationResult:
    """Exactly six candidates with distinct ids and lanes 1-6."""
    candidates = list(candidates)
    errors = []

    if len(candidates) != FIELD_SIZE:
        errors.append(f"A round needs exactly {FIELD_SIZE} candidates (got {len(candidates)})")

    ids = [c.candidate_id for c in candidates]
    if any(not cid for cid in ids):
        errors.append("Every candidate needs an id")
    if len(set(ids)) != len(ids):
        errors.append("Candidate ids must be unique")

    lanes = [c.lane_index for c in candidates]
    if any(lane < 1 or lane > FIELD_SIZE for lane in lanes):
        errors.append(f"Lane index must be between 1 and {FIELD_SIZE}")
    if len(set(lanes)) != len(lanes):
        errors.append("Lane indexes must be unique")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_podium(
    first_place: Optional[str],
    second_place: Optional[str],
    third_place: Optional[str],
    candidate_ids: Iterable[str],
) -> ValidationResult:
    """Winner is required; second/third are optional but must be distinct."""
    if not first_place:
        return ValidationResult.failed("Please select the actual winner")

    ids = set(candidate_ids)
    errors = []
    finishers = [("1st", first_place), ("2nd", second_place), ("3rd", third_place)]
    named = [(label, cid) for label, cid in finishers if cid]

    if third_place and not second_place:
        errors.append("2nd place is required when 3rd place is recorded")

    if len({cid for _, cid in named}) != len(named):
        errors.append("1st, 2nd, and 3rd place must be different candidates")

    for label, cid in named:
        if cid not in ids:
            errors.append(f"{label} place must be one of the candidates")

    return ValidationResult(is_valid=not errors, errors=errors)


def validate_margins(margins: dict[str, Any], candidate_ids: Iterable[str]) -> ValidationResult:
    """Margins are optional, but if provided must be non-negative numbers."""
    ids = set(candidate_ids)
    errors = []
    for cid, value in (margins or {}).items():
        if cid not in ids:
            errors.append(f"Margin given for unknown candidate '{cid}'")
            continue
        try:
            num = float(value)
        except (TypeError, ValueError):
            errors.append(f"Margin for '{cid}' must be a valid number")
            continue
        if not math.isfinite(num):
            errors.append(f"Margin for '{cid}' must be a valid number")
        elif num < 0:
            errors.append(f"Margin for '{cid}' cannot be negative")
    return ValidationResult(is_valid=not errors, errors=errors)


def ensure_round_composition(
    candidates: Iterable[Candidate],
    first_place: Optional[str] = None,
    second_place: Optional[str] = None,
    third_place: Optional[str] = None,
    margins: Optional[dict[str, Any]] = None,
) -> None:
    """Raise InvalidRoundComposition if the round or its finish order is invalid."""
    candidates = list(candidates)
    result = validate_candidates(candidates)
    if first_place is not None or second_place or third_place:
        ids = [c.candidate_id for c in candidates]
        result = result.merge(validate_podium(first_place, second_place, third_place, ids))
        result = result.merge(validate_margins(margins or {}, ids))
    if not result.is_valid:
        raise InvalidRoundComposition("; ".join(result.errors))


def sort_by_lane(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=lambda c: c.lane_index)
