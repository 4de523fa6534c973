"""Signal scoring engine for six-runner rounds.

Scores every candidate as a weighted sum of independent signals, turns the
scores into win probabilities with a softmax, and picks a winner:
  - Market: implied probability from the current odds, odds movement
  - History: lifetime/blended win rate, recent form
  - Streaks: win / placer / lower runs (lower runs count against)
  - Momentum: exponentially decayed recent finishes

Strategy profiles only change the numbers fed into these formulas
(per-signal multipliers, value threshold, hot-streak boost).
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from race_predictor.memory.state import LearnedState, SignalWeights
from race_predictor.rounds import Candidate, sort_by_lane
from race_predictor.stats import CandidateStats, position_value

logger = logging.getLogger(__name__)

SIGNAL_REGISTRY = {
    "odds":                {"label": "Odds",                "family": "odds",
                            "description": "Implied probability of the current quote"},
    "historical_win_rate": {"label": "Historical Win Rate", "family": "history",
                            "description": "Blended wins / appearances"},
    "recent_form":         {"label": "Recent Form",         "family": "history",
                            "description": "Position-weighted score over the last 5 finishes"},
    "win_streak":          {"label": "Win Streak",          "family": "win_streak",
                            "description": "Consecutive wins, capped at 5"},
    "placer_streak":       {"label": "Placer Streak",       "family": "streak",
                            "description": "Consecutive 2nd/3rd finishes, capped at 5"},
    "lower_streak":        {"label": "Lower Streak",        "family": "streak",
                            "description": "Consecutive 4th-6th finishes, counts against"},
    "momentum":            {"label": "Momentum",            "family": "momentum",
                            "description": "Decayed performance over the last 20 finishes"},
    "odds_movement":       {"label": "Odds Movement",       "family": "odds_movement",
                            "description": "Shortening price is positive, drifting is negative"},
}

DEFAULT_WEIGHTS = SignalWeights().as_dict()

# Signal families polled for agreement
AGREEMENT_FAMILIES = ("odds", "win_streak", "momentum", "consistency", "odds_movement")
HIGH_AGREEMENT = 0.7
MIXED_SIGNALS = 0.4

STREAK_CAP = 5
HOT_STREAK_THRESHOLD = 4

# Softmax temperature: scores live on roughly [-0.5, 2.0]
SOFTMAX_TEMPERATURE = 0.25

_CONSISTENCY_RANK = {"high": 3, "medium": 2, "low": 1, "unknown": 0}


@dataclass(frozen=True)
class StrategyProfile:
    """Named preset of signal multipliers and thresholds."""

    name: str
    multipliers: dict[str, float]
    value_threshold: float
    hot_streak_boost: float
    description: str = ""

    def multiplier(self, signal: str) -> float:
        return self.multipliers.get(signal, 1.0)


def _profile(name, description, value_threshold, hot_streak_boost, **multipliers) -> StrategyProfile:
    return StrategyProfile(
        name=name,
        multipliers={k: multipliers.get(k, 1.0) for k in SIGNAL_REGISTRY},
        value_threshold=value_threshold,
        hot_streak_boost=hot_streak_boost,
        description=description,
    )


_SAFE = dict(
    value_threshold=0.05, hot_streak_boost=1.15,
    odds=1.3, recent_form=0.8, win_streak=0.7, momentum=0.8, odds_movement=0.8,
)

STRATEGY_PROFILES: dict[str, StrategyProfile] = {
    "Safe": _profile("Safe", "Leans on the market favourite, needs a clear edge", **_SAFE),
    "Conservative": _profile("Conservative", "Alias of Safe", **_SAFE),
    "Value": _profile(
        "Value", "Backs history and price moves against the market",
        value_threshold=0.03, hot_streak_boost=1.2,
        odds=0.8, historical_win_rate=1.1, recent_form=1.1, momentum=1.1, odds_movement=1.3,
    ),
    "Balanced": _profile(
        "Balanced", "Default weights, modest edge required",
        value_threshold=0.02, hot_streak_boost=1.2,
    ),
    "Aggressive": _profile(
        "Aggressive", "Chases form and streaks, bets on any non-negative edge",
        value_threshold=0.0, hot_streak_boost=1.3,
        odds=0.7, historical_win_rate=1.1, recent_form=1.3, win_streak=1.4,
        lower_streak=0.8, momentum=1.3, odds_movement=1.2,
    ),
}
DEFAULT_STRATEGY = "Balanced"


def get_strategy(name: Optional[str]) -> StrategyProfile:
    """Look up a profile by name (case-insensitive), Balanced if unknown."""
    if name:
        for key, profile in STRATEGY_PROFILES.items():
            if key.lower() == name.strip().lower():
                return profile
        logger.warning("Unknown strategy profile %r, using %s", name, DEFAULT_STRATEGY)
    return STRATEGY_PROFILES[DEFAULT_STRATEGY]


@dataclass(frozen=True)
class SignalContribution:
    """One signal's raw value and its weighted contribution to the score."""

    signal: str
    value: float
    weighted: float

    def to_dict(self) -> dict[str, Any]:
        return {"signal": self.signal, "value": round(self.value, 6), "weighted": round(self.weighted, 6)}


@dataclass
class CandidateScore:
    candidate_id: str
    score: float
    base_score: float
    contributions: list[SignalContribution] = field(default_factory=list)
    hot_streak: bool = False


@dataclass
class PredictionResult:
    """Everything a caller needs to show a prediction for one round."""

    predicted_winner: str
    confidence: float                     # 0-100, agreement-adjusted
    probabilities: dict[str, float]       # candidate_id -> softmax probability
    implied_probabilities: dict[str, float]
    signal_agreement: float               # 0-1
    agreement_label: str                  # High Agreement | Moderate | Mixed Signals
    edge: float                           # winner probability - winner implied
    skip: bool = False
    skip_reason: Optional[str] = None
    signal_breakdown: dict[str, list[SignalContribution]] = field(default_factory=dict)
    hot_streaks: list[str] = field(default_factory=list)
    strategy: str = DEFAULT_STRATEGY
    odds_only: bool = False

    @property
    def confidence_probability(self) -> float:
        return self.confidence / 100.0

    @property
    def winner_implied_probability(self) -> float:
        return self.implied_probabilities.get(self.predicted_winner, 0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "predicted_winner": self.predicted_winner,
            "confidence": self.confidence,
            "probabilities": {k: round(v, 6) for k, v in self.probabilities.items()},
            "implied_probabilities": {k: round(v, 6) for k, v in self.implied_probabilities.items()},
            "signal_agreement": round(self.signal_agreement, 4),
            "agreement_label": self.agreement_label,
            "edge": round(self.edge, 6),
            "skip": self.skip,
            "skip_reason": self.skip_reason,
            "signal_breakdown": {
                cid: [c.to_dict() for c in contribs]
                for cid, contribs in self.signal_breakdown.items()
            },
            "hot_streaks": list(self.hot_streaks),
            "strategy": self.strategy,
            "odds_only": self.odds_only,
        }


# ──────────────────────────────────────────────
# Signals
# ──────────────────────────────────────────────

def _recent_form_score(stats: CandidateStats) -> float:
    """Mean position value over recent form (0 if no form)."""
    if not stats.recent_form:
        return 0.0
    return sum(position_value(f.position) for f in stats.recent_form) / len(stats.recent_form)


def _streak_score(streak: int) -> float:
    return min(streak, STREAK_CAP) / STREAK_CAP


def _odds_movement_score(movement: Optional[float]) -> float:
    """Shortening price (negative movement) is bullish."""
    if movement is None:
        return 0.0
    return -max(-1.0, min(1.0, movement))


def compute_signals(candidate: Candidate, stats: CandidateStats) -> dict[str, float]:
    """Raw signal values for one candidate, keyed like SIGNAL_REGISTRY."""
    return {
        "odds": candidate.implied_probability,
        "historical_win_rate": stats.win_rate,
        "recent_form": _recent_form_score(stats),
        "win_streak": _streak_score(stats.win_streak),
        "placer_streak": _streak_score(stats.placer_streak),
        "lower_streak": -_streak_score(stats.lower_streak),
        "momentum": stats.momentum_score,
        "odds_movement": _odds_movement_score(stats.odds_movement),
    }


def score_candidate(
    candidate: Candidate,
    stats: CandidateStats,
    weights: SignalWeights,
    profile: StrategyProfile,
) -> CandidateScore:
    """Weighted signal sum, then the multiplicative hot-streak boost."""
    signals = compute_signals(candidate, stats)
    weight_map = weights.as_dict()

    contributions = []
    for key, value in signals.items():
        weighted = value * weight_map.get(key, 0.0) * profile.multiplier(key)
        contributions.append(SignalContribution(signal=key, value=value, weighted=weighted))

    base = sum(c.weighted for c in contributions)
    hot = stats.win_streak >= HOT_STREAK_THRESHOLD
    score = base * profile.hot_streak_boost if hot else base

    return CandidateScore(
        candidate_id=candidate.candidate_id,
        score=score,
        base_score=base,
        contributions=contributions,
        hot_streak=hot,
    )


def softmax(scores: Sequence[float], temperature: float = SOFTMAX_TEMPERATURE) -> list[float]:
    """Numerically stable softmax (max-subtracted)."""
    if not scores:
        return []
    scaled = [s / temperature for s in scores]
    top = max(scaled)
    exps = [math.exp(s - top) for s in scaled]
    total = sum(exps)
    return [e / total for e in exps]


# ──────────────────────────────────────────────
# Agreement
# ──────────────────────────────────────────────

def _unique_top(values: dict[str, float]) -> Optional[str]:
    """Candidate with the strictly highest value, None on a tie."""
    if not values:
        return None
    best = max(values.values())
    leaders = [cid for cid, v in values.items() if v == best]
    return leaders[0] if len(leaders) == 1 else None


def family_picks(
    candidates: Sequence[Candidate], state: LearnedState,
) -> dict[str, Optional[str]]:
    """Which candidate each signal family alone would rank first.

    Families with no discriminating data (all zero, all unknown, or tied)
    abstain with None.
    """
    picks: dict[str, Optional[str]] = {}

    picks["odds"] = _unique_top({c.candidate_id: c.implied_probability for c in candidates})

    streaks = {c.candidate_id: state.stats_for(c.candidate_id).win_streak for c in candidates}
    picks["win_streak"] = _unique_top(streaks) if max(streaks.values(), default=0) > 0 else None

    momentum = {c.candidate_id: state.stats_for(c.candidate_id).momentum_score for c in candidates}
    picks["momentum"] = _unique_top(momentum) if max(momentum.values(), default=0) > 0 else None

    consistency = {
        c.candidate_id: _CONSISTENCY_RANK.get(state.variance_for(c.candidate_id).consistency, 0)
        for c in candidates
    }
    picks["consistency"] = _unique_top(consistency) if max(consistency.values(), default=0) > 0 else None

    shortening = {
        c.candidate_id: -state.stats_for(c.candidate_id).odds_movement
        for c in candidates
        if state.stats_for(c.candidate_id).odds_movement is not None
    }
    picks["odds_movement"] = (
        _unique_top(shortening) if shortening and max(shortening.values()) > 0 else None
    )

    return picks


def agreement_label(agreement: float) -> str:
    if agreement >= HIGH_AGREEMENT:
        return "High Agreement"
    if agreement < MIXED_SIGNALS:
        return "Mixed Signals"
    return "Moderate"


def signal_agreement(
    picks: dict[str, Optional[str]], preferred: Optional[str] = None,
) -> tuple[float, Optional[str]]:
    """Fraction of voting families that back the majority pick.

    Returns (agreement, majority_pick). No votes means full agreement.
    Majority ties go to `preferred` if it is among the leaders.
    """
    votes = [p for p in picks.values() if p is not None]
    if not votes:
        return 1.0, preferred

    counts = Counter(votes)
    top_count = max(counts.values())
    leaders = [cid for cid, n in counts.items() if n == top_count]
    majority = preferred if preferred in leaders else leaders[0]
    return top_count / len(votes), majority


# ──────────────────────────────────────────────
# Main entry point
# ──────────────────────────────────────────────

def _implied_map(candidates: Sequence[Candidate]) -> dict[str, float]:
    return {c.candidate_id: c.implied_probability for c in candidates}


def _odds_only_prediction(candidates: list[Candidate], profile: StrategyProfile) -> PredictionResult:
    """No learned state yet: rank purely on implied probability."""
    implied = _implied_map(candidates)
    total = sum(implied.values())
    probabilities = {cid: p / total for cid, p in implied.items()}
    winner = max(candidates, key=lambda c: c.implied_probability).candidate_id

    return PredictionResult(
        predicted_winner=winner,
        confidence=round(implied[winner] * 100, 2),
        probabilities=probabilities,
        implied_probabilities=implied,
        signal_agreement=1.0,
        agreement_label=agreement_label(1.0),
        edge=0.0,
        skip=False,
        signal_breakdown={
            c.candidate_id: [SignalContribution("odds", c.implied_probability, c.implied_probability)]
            for c in candidates
        },
        strategy=profile.name,
        odds_only=True,
    )


def predict_winner(
    candidates: Sequence[Candidate],
    learned_state: Optional[LearnedState],
    strategy: Optional[str] = None,
) -> PredictionResult:
    """Predict the winner of a round.

    Args:
        candidates: The six candidates with current-round odds.
        learned_state: Current learned snapshot, or None before any history.
        strategy: Strategy profile name; falls back to the state's
            selected strategy, then Balanced.

    Returns:
        PredictionResult. Deterministic for identical inputs.
    """
    ordered = sort_by_lane(candidates)
    if not ordered:
        raise ValueError("predict_winner needs at least one candidate")

    profile = get_strategy(strategy or (learned_state.selected_strategy if learned_state else None))

    if learned_state is None:
        return _odds_only_prediction(ordered, profile)

    weights = learned_state.signal_weights
    scored = [
        score_candidate(c, learned_state.stats_for(c.candidate_id), weights, profile)
        for c in ordered
    ]
    probs = softmax([s.score for s in scored])
    probabilities = {s.candidate_id: p for s, p in zip(scored, probs)}

    # Ties resolve to the lowest lane (first in `ordered`)
    winner = max(ordered, key=lambda c: probabilities[c.candidate_id]).candidate_id
    implied = _implied_map(ordered)

    picks = family_picks(ordered, learned_state)
    agreement, majority = signal_agreement(picks, preferred=winner)
    label = agreement_label(agreement)

    win_prob = probabilities[winner]
    confidence = win_prob * (0.7 + 0.3 * agreement)
    edge = win_prob - implied[winner]

    skip_reason = None
    if label == "Mixed Signals":
        skip_reason = "Signals disagree on the top candidate."
    elif edge < profile.value_threshold:
        skip_reason = (
            f"Edge {edge * 100:.1f}% is below the {profile.name} "
            f"threshold of {profile.value_threshold * 100:.1f}%."
        )

    hot_streaks = [
        f"{s.candidate_id} is on a {learned_state.stats_for(s.candidate_id).win_streak}-round "
        f"winning streak (x{profile.hot_streak_boost:.2f} boost)"
        for s in scored if s.hot_streak
    ]

    logger.debug(
        "Predicted %s at %.1f%% (agreement %.2f, majority %s, edge %.3f, strategy %s)",
        winner, confidence * 100, agreement, majority, edge, profile.name,
    )

    return PredictionResult(
        predicted_winner=winner,
        confidence=round(confidence * 100, 2),
        probabilities=probabilities,
        implied_probabilities=implied,
        signal_agreement=agreement,
        agreement_label=label,
        edge=edge,
        skip=skip_reason is not None,
        skip_reason=skip_reason,
        signal_breakdown={s.candidate_id: s.contributions for s in scored},
        hot_streaks=hot_streaks,
        strategy=profile.name,
    )
