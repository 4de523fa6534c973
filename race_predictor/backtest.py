"""Replay recorded rounds through a session to measure the model.

Each round entry is a dict shaped like the session inputs:
    {"candidates": [...], "strategy": "Value", "outcome": {"first_place": ...}}
Rounds are predicted with the state learned from the rounds before them,
then recorded, so the replay reproduces how the model would have played.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from race_predictor.analytics.metrics import Metrics
from race_predictor.session import PredictorSession

logger = logging.getLogger(__name__)


@dataclass
class ReplaySummary:
    rounds: int = 0
    rejected: int = 0
    skip_advised: int = 0
    staked_rounds: int = 0
    errors: list[str] = field(default_factory=list)
    metrics: Optional[Metrics] = None
    final_weights: dict[str, float] = field(default_factory=dict)
    final_learning_rate: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rounds": self.rounds,
            "rejected": self.rejected,
            "skip_advised": self.skip_advised,
            "staked_rounds": self.staked_rounds,
            "errors": list(self.errors),
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "final_weights": {k: round(v, 4) for k, v in self.final_weights.items()},
            "final_learning_rate": self.final_learning_rate,
        }


def load_rounds_file(path: Path) -> list[dict[str, Any]]:
    """Read a JSON list of rounds, or an object with a "rounds" list."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("rounds", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of rounds")
    return data


async def replay_rounds(
    rounds: Iterable[dict[str, Any]],
    session: PredictorSession,
    follow_advice: bool = False,
) -> ReplaySummary:
    """Predict then record every round in order.

    With follow_advice, rounds that carry no bet get the recommended stake
    placed on the predicted winner.
    """
    summary = ReplaySummary()

    for n, entry in enumerate(rounds, start=1):
        if not isinstance(entry, dict):
            summary.rejected += 1
            summary.errors.append(f"round {n}: not an object")
            continue

        round_input = {"candidates": entry.get("candidates", []), "strategy": entry.get("strategy")}
        predicted = session.predict(round_input)
        if not predicted.validation.is_valid:
            summary.rejected += 1
            summary.errors.append(f"round {n}: {'; '.join(predicted.validation.errors)}")
            continue

        prediction = predicted.prediction
        if prediction.skip:
            summary.skip_advised += 1

        outcome = dict(entry.get("outcome") or {})
        stake = predicted.bet_recommendation.amount
        if follow_advice and stake > 0 and not outcome.get("bet"):
            outcome["bet"] = {"candidate_id": prediction.predicted_winner, "amount": stake}

        recorded = await session.record_round(round_input, outcome, prediction)
        if not recorded.validation.is_valid:
            summary.rejected += 1
            summary.errors.append(f"round {n}: {'; '.join(recorded.validation.errors)}")
            continue

        summary.rounds += 1
        if recorded.record.bet is not None:
            summary.staked_rounds += 1

    summary.metrics = session.metrics()
    if session.state is not None:
        summary.final_weights = session.state.signal_weights.as_dict()
        summary.final_learning_rate = session.state.learning_rate

    logger.info(
        "Replayed %d rounds (%d rejected, %d skip advisories, %d staked)",
        summary.rounds, summary.rejected, summary.skip_advised, summary.staked_rounds,
    )
    return summary
