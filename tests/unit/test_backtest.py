"""Tests for replaying recorded rounds."""

import json

import pytest

from race_predictor.backtest import load_rounds_file, replay_rounds
from race_predictor.session import PredictorSession


def _rounds(payload, winners):
    return [{**payload, "outcome": {"first_place": w}} for w in winners]


@pytest.fixture
async def session(memory_store, test_settings):
    s = PredictorSession(memory_store, test_settings)
    await s.load()
    return s


class TestReplayRounds:
    @pytest.mark.asyncio
    async def test_replays_in_order(self, session, round_payload):
        summary = await replay_rounds(_rounds(round_payload, "121314"), session)
        assert summary.rounds == 6
        assert summary.rejected == 0
        assert summary.metrics.total_rounds == 6
        assert [r.first_place for r in session.history] == list("121314")
        assert summary.final_weights
        assert session.state.last_calibration is not None

    @pytest.mark.asyncio
    async def test_bad_rounds_are_reported_not_fatal(self, session, round_payload):
        rounds = _rounds(round_payload, "12")
        rounds.insert(1, {"candidates": round_payload["candidates"][:3], "outcome": {"first_place": "1"}})
        rounds.append("garbage")
        rounds.append({**round_payload, "outcome": {"first_place": "9"}})

        summary = await replay_rounds(rounds, session)
        assert summary.rounds == 2
        assert summary.rejected == 3
        assert summary.errors[0].startswith("round 2:")
        assert "not an object" in summary.errors[1]

    @pytest.mark.asyncio
    async def test_follow_advice_places_stakes(self, session, round_payload):
        # Make "1" a 5/1 shot that keeps winning, so the model finds an edge
        payload = json.loads(json.dumps(round_payload))
        payload["candidates"][0]["odds"] = "5/1"
        payload["candidates"][3]["odds"] = "2/1"
        summary = await replay_rounds(_rounds(payload, "1" * 12), session, follow_advice=True)
        assert summary.rounds == 12
        assert summary.staked_rounds > 0
        assert summary.metrics.total_bet_amount > 0

    @pytest.mark.asyncio
    async def test_no_stakes_without_advice(self, session, round_payload):
        summary = await replay_rounds(_rounds(round_payload, "1111"), session)
        assert summary.staked_rounds == 0


class TestLoadRoundsFile:
    def test_list(self, tmp_path, round_payload):
        path = tmp_path / "rounds.json"
        path.write_text(json.dumps(_rounds(round_payload, "12")))
        assert len(load_rounds_file(path)) == 2

    def test_wrapped(self, tmp_path, round_payload):
        path = tmp_path / "rounds.json"
        path.write_text(json.dumps({"rounds": _rounds(round_payload, "3")}))
        assert load_rounds_file(path)[0]["outcome"]["first_place"] == "3"

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "rounds.json"
        path.write_text("42")
        with pytest.raises(ValueError):
            load_rounds_file(path)
