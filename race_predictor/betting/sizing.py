"""Stake recommendation using quarter-Kelly, scaled by signal agreement."""

import logging
import math
from dataclasses import dataclass

from race_predictor.rounds import MAX_BET, MIN_BET

logger = logging.getLogger(__name__)

KELLY_FRACTION = 0.25
DEFAULT_BANKROLL_UNIT = 10_000.0
STAKE_INCREMENT = 100
MAX_CONFIDENCE = 0.999  # keeps 1 - confidence away from zero


@dataclass(frozen=True)
class BetSizeRecommendation:
    amount: int
    explanation: str
    edge: float = 0.0

    def to_dict(self) -> dict:
        return {"amount": self.amount, "explanation": self.explanation, "edge": round(self.edge, 6)}


def _round_to_increment(value: float, increment: int = STAKE_INCREMENT) -> int:
    """Nearest multiple of `increment`, halves rounding up."""
    return int(math.floor(value / increment + 0.5)) * increment


def calculate_bet_size(
    confidence: float,
    implied_probability: float,
    bankroll_unit: float = DEFAULT_BANKROLL_UNIT,
    skip_flag: bool = False,
    signal_agreement: float = 1.0,
) -> BetSizeRecommendation:
    """Recommend a stake for the predicted winner.

    Args:
        confidence: Model win probability for the pick (0.0 - 1.0).
        implied_probability: Market probability from the odds (0.0 - 1.0).
        bankroll_unit: Bankroll the Kelly fraction is taken from.
        skip_flag: Scoring engine's skip advisory.
        signal_agreement: 0.0 - 1.0, scales the stake down when signals disagree.

    Returns:
        BetSizeRecommendation with an amount in [0, 10000], a multiple of 100.
    """
    if skip_flag:
        return BetSizeRecommendation(
            amount=0,
            explanation="No value edge detected. Model recommends skipping this round.",
        )

    if not all(math.isfinite(x) for x in (confidence, implied_probability, bankroll_unit, signal_agreement)):
        logger.warning(
            "Non-finite bet sizing input: confidence=%r implied=%r bankroll=%r agreement=%r",
            confidence, implied_probability, bankroll_unit, signal_agreement,
        )
        return BetSizeRecommendation(
            amount=0,
            explanation="Probability inputs are not valid numbers. No stake recommended.",
        )

    edge = confidence - implied_probability
    if edge <= 0:
        return BetSizeRecommendation(
            amount=0,
            explanation="No positive edge detected. Odds do not favor this bet.",
            edge=edge,
        )

    p = min(confidence, MAX_CONFIDENCE)
    agreement = max(0.0, min(1.0, signal_agreement))
    kelly = (edge / (1 - p)) * bankroll_unit * KELLY_FRACTION * agreement

    amount = _round_to_increment(max(MIN_BET, min(MAX_BET, kelly)))
    amount = max(MIN_BET, min(MAX_BET, amount))

    pct = edge * 100
    if amount == 0:
        explanation = f"Edge of {pct:.1f}% is too small to justify a stake. Consider skipping."
    elif amount <= 500:
        explanation = f"Small edge detected ({pct:.1f}%). Conservative stake recommended."
    elif amount <= 2500:
        explanation = f"Moderate edge detected ({pct:.1f}%). Standard stake size."
    else:
        explanation = f"Strong edge detected ({pct:.1f}%). Larger stake justified."

    if agreement < 0.4:
        explanation += " Stake reduced due to mixed signals."

    logger.debug("Bet size %d from kelly %.2f (edge %.3f, agreement %.2f)", amount, kelly, edge, agreement)
    return BetSizeRecommendation(amount=amount, explanation=explanation, edge=edge)
