"""Structured inputs accepted from the UI layer."""

from typing import Optional, Union

from pydantic import BaseModel, Field

from race_predictor.odds import OddsValue, from_numerator, parse_odds
from race_predictor.rounds import Candidate


class CandidateInput(BaseModel):
    """One candidate as entered: id, lane, and odds text or bare numerator."""

    candidate_id: str = Field(min_length=1)
    lane_index: int
    odds: Union[str, float]

    def to_candidate(self) -> Candidate:
        """Raises InvalidOddsFormat on bad odds."""
        return Candidate(
            candidate_id=self.candidate_id.strip(),
            lane_index=self.lane_index,
            odds=_to_odds(self.odds),
        )


class RoundInput(BaseModel):
    """The six candidates for an upcoming round plus the chosen strategy."""

    candidates: list[CandidateInput]
    strategy: Optional[str] = None

    def to_candidates(self) -> list[Candidate]:
        return [c.to_candidate() for c in self.candidates]


class BetInput(BaseModel):
    """Stake placed by the user. Odds default to the candidate's round odds."""

    candidate_id: str = Field(min_length=1)
    amount: float
    odds: Optional[Union[str, float]] = None

    def odds_value(self) -> Optional[OddsValue]:
        return _to_odds(self.odds) if self.odds is not None else None


class OutcomeInput(BaseModel):
    """Finish order for a completed round."""

    first_place: str = Field(min_length=1)
    second_place: Optional[str] = None
    third_place: Optional[str] = None
    margins: dict[str, float] = Field(default_factory=dict)
    bet: Optional[BetInput] = None


def _to_odds(value: Union[str, float]) -> OddsValue:
    if isinstance(value, str):
        return parse_odds(value)
    return from_numerator(value)
