"""Shared test fixtures for the race predictor."""

import itertools
from typing import AsyncGenerator, Callable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from race_predictor.config import Settings
from race_predictor.memory.store import InMemoryBlobStore, SqlBlobStore
from race_predictor.models.database import Base, make_session_factory
from race_predictor.odds import OddsValue
from race_predictor.rounds import Candidate, RoundRecord

DEFAULT_IDS = ("1", "2", "3", "4", "5", "6")
DEFAULT_ODDS = (2, 3, 4, 5, 6, 8)


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create an in-memory SQLite engine for testing."""
    from race_predictor.models import settings  # noqa: F401  # registers the blob table

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sql_store(db_engine) -> SqlBlobStore:
    return SqlBlobStore(make_session_factory(db_engine))


@pytest.fixture
def memory_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def test_settings() -> Settings:
    """Settings that ignore any local .env file."""
    return Settings(
        _env_file=None,
        db_path=":memory:",
        recent_window_size=20,
        calibration_window=10,
        bankroll_unit=10_000,
        default_strategy="Balanced",
    )


@pytest.fixture
def make_candidates() -> Callable[..., list[Candidate]]:
    """Factory: six candidates with N/1 odds, ids and lanes 1-6 by default."""

    def _make(odds=DEFAULT_ODDS, ids=DEFAULT_IDS) -> list[Candidate]:
        return [
            Candidate(candidate_id=cid, lane_index=lane, odds=OddsValue(float(num), 1.0))
            for lane, (cid, num) in enumerate(zip(ids, odds), start=1)
        ]

    return _make


@pytest.fixture
def make_round(make_candidates) -> Callable[..., RoundRecord]:
    """Factory for completed rounds with strictly increasing timestamps."""
    clock = itertools.count(1_700_000_000_000, 60_000)

    def _make(
        first: str,
        second: Optional[str] = None,
        third: Optional[str] = None,
        predicted: Optional[str] = None,
        confidence: float = 50.0,
        odds=DEFAULT_ODDS,
        ids=DEFAULT_IDS,
        margins: Optional[dict[str, float]] = None,
        predicted_probabilities: Optional[dict[str, float]] = None,
        strategy: str = "Balanced",
        bet=None,
    ) -> RoundRecord:
        candidates = make_candidates(odds=odds, ids=ids)
        implied = {c.candidate_id: c.implied_probability for c in candidates}
        if predicted_probabilities is None:
            total = sum(implied.values())
            predicted_probabilities = {cid: p / total for cid, p in implied.items()}
        return RoundRecord(
            candidates=tuple(candidates),
            predicted_winner=predicted or ids[0],
            confidence=confidence,
            first_place=first,
            second_place=second,
            third_place=third,
            implied_probabilities=implied,
            predicted_probabilities=predicted_probabilities,
            margins=margins or {},
            strategy_profile=strategy,
            bet=bet,
            timestamp=next(clock),
        )

    return _make


@pytest.fixture
def round_payload() -> dict:
    """UI-shaped round input: six candidates, fractional odds text."""
    return {
        "candidates": [
            {"candidate_id": cid, "lane_index": lane, "odds": f"{num}/1"}
            for lane, (cid, num) in enumerate(zip(DEFAULT_IDS, DEFAULT_ODDS), start=1)
        ],
        "strategy": "Balanced",
    }
