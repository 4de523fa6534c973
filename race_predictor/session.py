"""Predictor session: the single owner of history and learned state.

Load once, then for each round:
    outcome = session.predict(round_input)
    recorded = await session.record_round(round_input, outcome_input, outcome.prediction)

Every public entry point returns a result object carrying a ValidationResult;
bad user input never raises past this module.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from race_predictor.analytics.metrics import Metrics, ModelMood, calculate_metrics, calculate_model_mood
from race_predictor.betting.sizing import BetSizeRecommendation, calculate_bet_size
from race_predictor.config import Settings, get_settings, now_ms
from race_predictor.errors import (
    InvalidOddsFormat,
    InvalidRoundComposition,
    OutOfRangeBet,
    UnknownStrategy,
    ValidationResult,
)
from race_predictor.memory.state import LearnedState, default_learned_state
from race_predictor.memory.store import (
    BlobStore,
    clear_all_data,
    load_history,
    load_learned_state,
    save_history,
    save_learned_state,
)
from race_predictor.probability import STRATEGY_PROFILES, PredictionResult, get_strategy, predict_winner
from race_predictor.probability_tuning import CalibrationReport, apply_feedback
from race_predictor.rounds import BetRecord, Candidate, RoundRecord, ensure_round_composition
from race_predictor.schemas import OutcomeInput, RoundInput
from race_predictor.stats import aggregate_history

logger = logging.getLogger(__name__)

_USER_INPUT_ERRORS = (
    InvalidOddsFormat, InvalidRoundComposition, OutOfRangeBet, UnknownStrategy, ValidationError,
)


@dataclass
class PredictionOutcome:
    validation: ValidationResult
    prediction: Optional[PredictionResult] = None
    bet_recommendation: Optional[BetSizeRecommendation] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.validation.is_valid,
            "errors": list(self.validation.errors),
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "bet_recommendation": self.bet_recommendation.to_dict() if self.bet_recommendation else None,
        }


@dataclass
class RecordOutcome:
    validation: ValidationResult
    record: Optional[RoundRecord] = None
    calibration: Optional[CalibrationReport] = None
    metrics: Optional[Metrics] = None


def rebuild_learned_state(
    history: Sequence[RoundRecord],
    previous: Optional[LearnedState],
    recent_window_size: int,
    selected_strategy: str,
) -> LearnedState:
    """Recompute stats and totals from history, keep learned weights.

    Counts and totals always come from the full history so they can't drift;
    only weights, learning rate, log-loss and the calibration guard carry over.
    """
    base = previous or default_learned_state(recent_window_size, selected_strategy)
    contender_stats, variance_data = aggregate_history(history, recent_window_size)
    bets = [r.bet for r in history if r.bet]

    return replace(
        base,
        contender_stats=contender_stats,
        variance_data=variance_data,
        recent_window_size=recent_window_size,
        total_rounds=len(history),
        correct_predictions=sum(1 for r in history if r.is_correct),
        total_bet_amount=sum(b.amount for b in bets),
        total_payout=sum(b.payout for b in bets),
    )


class PredictorSession:
    """Owns the round history and the active LearnedState for one user."""

    def __init__(self, store: BlobStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.history: list[RoundRecord] = []
        self.state: Optional[LearnedState] = None
        self.selected_strategy: str = get_strategy(self.settings.default_strategy).name
        self.loaded = False

    async def load(self) -> Optional[LearnedState]:
        """Load history and state. Absent or corrupt data yields defaults."""
        self.history = await load_history(self.store)
        persisted = await load_learned_state(self.store)

        if persisted is not None:
            self.selected_strategy = get_strategy(persisted.selected_strategy).name

        if self.history or persisted is not None:
            self.state = rebuild_learned_state(
                self.history, persisted,
                self.settings.recent_window_size, self.selected_strategy,
            )
        else:
            self.state = None

        self.loaded = True
        logger.info(
            "Predictor loaded: %d rounds, learned state %s",
            len(self.history), "present" if self.state else "absent",
        )
        return self.state

    def _strategy_name(self, requested: Optional[str]) -> str:
        """Profile name for a requested strategy, or the session's selection when None."""
        if requested is None:
            return self.selected_strategy
        profile = next((p for key, p in STRATEGY_PROFILES.items() if key.lower() == requested.lower()), None)
        if profile is None:
            raise UnknownStrategy(
                f"Unknown strategy '{requested}'. Choose one of: {', '.join(STRATEGY_PROFILES)}"
            )
        return profile.name

    def select_strategy(self, name: str) -> ValidationResult:
        try:
            strategy = self._strategy_name(name or "")
        except UnknownStrategy as e:
            return ValidationResult.from_exception(e)
        self.selected_strategy = strategy
        if self.state is not None:
            self.state = replace(self.state, selected_strategy=strategy)
        return ValidationResult.ok()

    def _candidates(self, round_input: RoundInput) -> list[Candidate]:
        candidates = round_input.to_candidates()
        ensure_round_composition(candidates)
        return candidates

    def predict(self, round_input: RoundInput | dict) -> PredictionOutcome:
        """Score a round and recommend a stake. Never raises on bad input."""
        try:
            if isinstance(round_input, dict):
                round_input = RoundInput.model_validate(round_input)
            candidates = self._candidates(round_input)
            strategy = self._strategy_name(round_input.strategy or None)
        except _USER_INPUT_ERRORS as e:
            return PredictionOutcome(validation=ValidationResult.from_exception(e))

        prediction = predict_winner(candidates, self.state, strategy)
        recommendation = calculate_bet_size(
            confidence=prediction.confidence_probability,
            implied_probability=prediction.winner_implied_probability,
            bankroll_unit=self.settings.bankroll_unit,
            skip_flag=prediction.skip,
            signal_agreement=prediction.signal_agreement,
        )
        return PredictionOutcome(
            validation=ValidationResult.ok(),
            prediction=prediction,
            bet_recommendation=recommendation,
        )

    def _build_record(
        self,
        candidates: list[Candidate],
        outcome: OutcomeInput,
        prediction: PredictionResult,
    ) -> RoundRecord:
        ensure_round_composition(
            candidates,
            outcome.first_place,
            outcome.second_place,
            outcome.third_place,
            outcome.margins,
        )

        bet = None
        if outcome.bet is not None:
            staked = next((c for c in candidates if c.candidate_id == outcome.bet.candidate_id), None)
            if staked is None:
                raise InvalidRoundComposition("Bet must be placed on one of the candidates")
            bet = BetRecord.settle(
                staked_candidate_id=staked.candidate_id,
                amount=outcome.bet.amount,
                odds_at_stake=outcome.bet.odds_value() or staked.odds,
                winner_id=outcome.first_place,
            )

        timestamp = now_ms()
        if self.history and timestamp <= self.history[-1].timestamp:
            timestamp = self.history[-1].timestamp + 1

        return RoundRecord(
            candidates=tuple(candidates),
            predicted_winner=prediction.predicted_winner,
            confidence=prediction.confidence,
            first_place=outcome.first_place,
            second_place=outcome.second_place or None,
            third_place=outcome.third_place or None,
            implied_probabilities=dict(prediction.implied_probabilities),
            predicted_probabilities=dict(prediction.probabilities),
            margins=dict(outcome.margins),
            strategy_profile=prediction.strategy,
            bet=bet,
            timestamp=timestamp,
        )

    async def record_round(
        self,
        round_input: RoundInput | dict,
        outcome_input: OutcomeInput | dict,
        prediction: Optional[PredictionResult] = None,
    ) -> RecordOutcome:
        """Finalize a round: append it, re-aggregate, calibrate, persist."""
        try:
            if isinstance(round_input, dict):
                round_input = RoundInput.model_validate(round_input)
            if isinstance(outcome_input, dict):
                outcome_input = OutcomeInput.model_validate(outcome_input)
            candidates = self._candidates(round_input)
            strategy = self._strategy_name(round_input.strategy or None)
            if prediction is None:
                prediction = predict_winner(candidates, self.state, strategy)
            record = self._build_record(candidates, outcome_input, prediction)
        except _USER_INPUT_ERRORS as e:
            logger.info("Round rejected: %s", e)
            return RecordOutcome(validation=ValidationResult.from_exception(e))

        history = [*self.history, record]
        state = rebuild_learned_state(
            history, self.state,
            self.settings.recent_window_size, self.selected_strategy,
        )
        state, report = apply_feedback(history, state, self.settings.calibration_window)

        await save_history(self.store, history)
        await save_learned_state(self.store, state)
        self.history = history
        self.state = state

        logger.info(
            "Recorded round %s: predicted %s, winner %s (%s)",
            record.id, record.predicted_winner, record.actual_winner,
            "correct" if record.is_correct else "wrong",
        )
        return RecordOutcome(
            validation=ValidationResult.ok(),
            record=record,
            calibration=report,
            metrics=self.metrics(),
        )

    async def reset(self) -> None:
        """Forget all history and learned weights."""
        await clear_all_data(self.store)
        self.history = []
        self.state = None
        logger.info("Predictor memory reset")

    def metrics(self) -> Metrics:
        totals = self.state or default_learned_state()
        return calculate_metrics(self.history, totals.total_bet_amount, totals.total_payout)

    def mood(self) -> ModelMood:
        return calculate_model_mood(self.history)
