"""Per-candidate statistics aggregated from round history.

Stats are always recomputed from the full history rather than drifted
incrementally. Two modes feed the persisted snapshot:
  - lifetime: every round the candidate appeared in
  - recent: the candidate's last `recent_window_size` appearances
Counts are blended 60/40 recent/lifetime; form, streaks, momentum and
odds movement come straight from the lifetime pass.
"""

import logging
import statistics
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional, Sequence

from race_predictor.rounds import RoundRecord

logger = logging.getLogger(__name__)

RECENT_FORM_LENGTH = 5
MOMENTUM_LOOKBACK = 20
MOMENTUM_DECAY = 0.7
BLEND_RECENT = 0.6
BLEND_LIFETIME = 0.4

# Value of a finishing position for momentum and form scoring
POSITION_VALUES = {1: 1.0, 2: 0.7, 3: 0.5}
LOWER_VALUE = 0.2

# Consistency buckets on margin variance
HIGH_CONSISTENCY_MAX = 1.0
MEDIUM_CONSISTENCY_MAX = 5.0
MIN_MARGIN_SAMPLES = 2


@dataclass(frozen=True)
class FormEntry:
    """One finish in a candidate's recent form (newest first)."""

    position: Optional[int]
    margin: Optional[float] = None
    timestamp: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {"position": self.position, "margin": self.margin, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FormEntry":
        return cls(
            position=data.get("position"),
            margin=data.get("margin"),
            timestamp=data.get("timestamp"),
        )


@dataclass
class CandidateStats:
    """Aggregate record for one candidate."""

    appearances: int = 0
    wins: int = 0
    places: int = 0
    shows: int = 0
    recent_form: list[FormEntry] = field(default_factory=list)
    win_streak: int = 0
    placer_streak: int = 0
    lower_streak: int = 0
    momentum_score: float = 0.0
    odds_movement: Optional[float] = None

    @property
    def win_rate(self) -> float:
        return self.wins / self.appearances if self.appearances > 0 else 0.0

    @property
    def place_rate(self) -> float:
        return self.places / self.appearances if self.appearances > 0 else 0.0

    @property
    def show_rate(self) -> float:
        return self.shows / self.appearances if self.appearances > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "appearances": self.appearances,
            "wins": self.wins,
            "places": self.places,
            "shows": self.shows,
            "recent_form": [f.to_dict() for f in self.recent_form],
            "win_streak": self.win_streak,
            "placer_streak": self.placer_streak,
            "lower_streak": self.lower_streak,
            "momentum_score": self.momentum_score,
            "odds_movement": self.odds_movement,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CandidateStats":
        return cls(
            appearances=int(data.get("appearances", 0)),
            wins=int(data.get("wins", 0)),
            places=int(data.get("places", 0)),
            shows=int(data.get("shows", 0)),
            recent_form=[FormEntry.from_dict(f) for f in data.get("recent_form", [])],
            win_streak=int(data.get("win_streak", 0)),
            placer_streak=int(data.get("placer_streak", 0)),
            lower_streak=int(data.get("lower_streak", 0)),
            momentum_score=float(data.get("momentum_score", 0.0)),
            odds_movement=data.get("odds_movement"),
        )


@dataclass
class VarianceEntry:
    """Finish-margin spread for one candidate."""

    variance: Optional[float] = None
    samples: int = 0
    consistency: str = "unknown"  # high | medium | low | unknown

    def to_dict(self) -> dict[str, Any]:
        return {"variance": self.variance, "samples": self.samples, "consistency": self.consistency}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VarianceEntry":
        return cls(
            variance=data.get("variance"),
            samples=int(data.get("samples", 0)),
            consistency=data.get("consistency", "unknown"),
        )


# ──────────────────────────────────────────────
# Building blocks
# ──────────────────────────────────────────────

def _finish_class(position: Optional[int]) -> str:
    if position is None:
        return "unplaced"
    if position == 1:
        return "win"
    if position in (2, 3):
        return "podium"
    return "lower"


def position_value(position: Optional[int]) -> float:
    """Score a finish for momentum/form: win 1.0, 2nd 0.7, 3rd 0.5, lower 0.2."""
    if position is None:
        return 0.0
    return POSITION_VALUES.get(position, LOWER_VALUE)


def compute_streaks(positions: Sequence[Optional[int]]) -> tuple[int, int, int]:
    """(win_streak, placer_streak, lower_streak) from newest-first positions.

    Counts the run of the newest result's class and stops at the first
    result of a different class, so at most one counter is non-zero.
    An unplaced newest result yields no streak.
    """
    if not positions:
        return 0, 0, 0

    head = _finish_class(positions[0])
    run = 0
    for pos in positions:
        if _finish_class(pos) != head:
            break
        run += 1

    if head == "win":
        return run, 0, 0
    if head == "podium":
        return 0, run, 0
    if head == "lower":
        return 0, 0, run
    return 0, 0, 0


def compute_momentum(positions: Sequence[Optional[int]]) -> float:
    """Exponentially decayed performance over newest-first positions, in [0, 1]."""
    recent = list(positions[:MOMENTUM_LOOKBACK])
    if not recent:
        return 0.0

    weighted = 0.0
    max_weighted = 0.0
    for step, pos in enumerate(recent):
        decay = MOMENTUM_DECAY ** step
        weighted += position_value(pos) * decay
        max_weighted += decay

    return max(0.0, min(1.0, weighted / max_weighted))


def compute_odds_movement(quotes: Sequence[float]) -> Optional[float]:
    """Fractional change between the two newest quotes (newest first).

    Positive means the price drifted out, negative means it shortened.
    """
    if len(quotes) < 2:
        return None
    current, previous = quotes[0], quotes[1]
    if previous <= 0:
        return None
    return (current - previous) / previous


def compute_variance(margins: Iterable[float]) -> VarianceEntry:
    """Population variance of finish margins, bucketed into consistency."""
    samples = [float(m) for m in margins if m is not None]
    if len(samples) < MIN_MARGIN_SAMPLES:
        return VarianceEntry(variance=None, samples=len(samples), consistency="unknown")

    var = statistics.pvariance(samples)
    if var < HIGH_CONSISTENCY_MAX:
        consistency = "high"
    elif var < MEDIUM_CONSISTENCY_MAX:
        consistency = "medium"
    else:
        consistency = "low"
    return VarianceEntry(variance=round(var, 6), samples=len(samples), consistency=consistency)


def _appearances_newest_first(history: Sequence[RoundRecord], candidate_id: str) -> list[RoundRecord]:
    ordered = sorted(history, key=lambda r: r.timestamp)
    return [r for r in reversed(ordered) if r.candidate(candidate_id) is not None]


def _counts(rounds: Sequence[RoundRecord], candidate_id: str) -> tuple[int, int, int, int]:
    appearances = wins = places = shows = 0
    for r in rounds:
        appearances += 1
        pos = r.finishing_position(candidate_id)
        if pos == 1:
            wins += 1
        elif pos == 2:
            places += 1
        elif pos == 3:
            shows += 1
    return appearances, wins, places, shows


# ──────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────

def compute_candidate_stats(history: Sequence[RoundRecord], candidate_id: str) -> CandidateStats:
    """Lifetime stats over every round the candidate appeared in."""
    rounds = _appearances_newest_first(history, candidate_id)
    if not rounds:
        return CandidateStats()

    appearances, wins, places, shows = _counts(rounds, candidate_id)
    positions = [r.finishing_position(candidate_id) for r in rounds]
    win_streak, placer_streak, lower_streak = compute_streaks(positions)

    recent_form = [
        FormEntry(
            position=r.finishing_position(candidate_id),
            margin=r.margins.get(candidate_id),
            timestamp=r.timestamp,
        )
        for r in rounds[:RECENT_FORM_LENGTH]
    ]
    quotes = [r.candidate(candidate_id).odds.fractional for r in rounds[:2]]

    return CandidateStats(
        appearances=appearances,
        wins=wins,
        places=places,
        shows=shows,
        recent_form=recent_form,
        win_streak=win_streak,
        placer_streak=placer_streak,
        lower_streak=lower_streak,
        momentum_score=round(compute_momentum(positions), 6),
        odds_movement=compute_odds_movement(quotes),
    )


def compute_recent_stats(
    history: Sequence[RoundRecord], candidate_id: str, window: int,
) -> CandidateStats:
    """Counts over the candidate's last `window` appearances only."""
    rounds = _appearances_newest_first(history, candidate_id)[:max(0, window)]
    appearances, wins, places, shows = _counts(rounds, candidate_id)
    return CandidateStats(appearances=appearances, wins=wins, places=places, shows=shows)


def blend_stats(recent: CandidateStats, lifetime: CandidateStats) -> CandidateStats:
    """Blend counts 60/40 recent/lifetime, keep lifetime continuity fields."""
    def _blend(recent_count: int, lifetime_count: int) -> int:
        return round(recent_count * BLEND_RECENT + lifetime_count * BLEND_LIFETIME)

    return replace(
        lifetime,
        appearances=_blend(recent.appearances, lifetime.appearances),
        wins=_blend(recent.wins, lifetime.wins),
        places=_blend(recent.places, lifetime.places),
        shows=_blend(recent.shows, lifetime.shows),
        recent_form=list(lifetime.recent_form),
    )


def compute_candidate_variance(history: Sequence[RoundRecord], candidate_id: str) -> VarianceEntry:
    margins = [
        r.margins[candidate_id]
        for r in history
        if candidate_id in r.margins and r.candidate(candidate_id) is not None
    ]
    return compute_variance(margins)


def candidate_ids_in(history: Iterable[RoundRecord]) -> list[str]:
    """Every candidate id seen, in first-seen order."""
    seen: dict[str, None] = {}
    for r in sorted(history, key=lambda r: r.timestamp):
        for cid in r.candidate_ids:
            seen.setdefault(cid, None)
    return list(seen)


def aggregate_history(
    history: Sequence[RoundRecord], recent_window_size: int,
) -> tuple[dict[str, CandidateStats], dict[str, VarianceEntry]]:
    """Blended stats and variance for every candidate in the history."""
    contender_stats: dict[str, CandidateStats] = {}
    variance_data: dict[str, VarianceEntry] = {}

    for cid in candidate_ids_in(history):
        lifetime = compute_candidate_stats(history, cid)
        recent = compute_recent_stats(history, cid, recent_window_size)
        contender_stats[cid] = blend_stats(recent, lifetime)
        variance_data[cid] = compute_candidate_variance(history, cid)

    logger.debug(
        "Aggregated %d rounds into stats for %d candidates (window=%d)",
        len(history), len(contender_stats), recent_window_size,
    )
    return contender_stats, variance_data
