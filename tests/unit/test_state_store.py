"""Tests for learned-state encoding and the blob store persistence boundary."""

import json

import pytest

from race_predictor.errors import CorruptPersistedState
from race_predictor.memory import (
    ENTRIES_KEY,
    LEARNED_STATE_KEY,
    STORAGE_VERSION,
    VERSION_KEY,
    LearnedState,
    SignalWeights,
    decode_learned_state,
    encode_learned_state,
    load_history,
    load_learned_state,
    save_history,
    save_learned_state,
)
from race_predictor.rounds import RoundRecord
from race_predictor.session import PredictorSession
from race_predictor.stats import CandidateStats, FormEntry, VarianceEntry


def _state() -> LearnedState:
    return LearnedState(
        contender_stats={"1": CandidateStats(appearances=3, wins=2, recent_form=[FormEntry(1, 0.0, 1)])},
        variance_data={"1": VarianceEntry(0.5, 3, "high")},
        signal_weights=SignalWeights(odds=0.55),
        learning_rate=0.025,
        selected_strategy="Value",
        total_bet_amount=200.0,
        total_payout=600.0,
        last_calibrated_round_id="abc",
    )


class TestLearnedStateCodec:
    def test_round_trip(self):
        state = _state()
        assert decode_learned_state(encode_learned_state(state)) == state

    def test_blob_is_versioned(self):
        payload = json.loads(encode_learned_state(LearnedState()))
        assert payload["version"] == STORAGE_VERSION

    def test_other_version_rejected(self):
        blob = json.dumps({"version": "4.0", "state": LearnedState().to_dict()}).encode()
        with pytest.raises(CorruptPersistedState):
            decode_learned_state(blob)

    def test_garbage_rejected(self):
        with pytest.raises(CorruptPersistedState):
            decode_learned_state(b"\x00not json")

    def test_negative_weight_rejected(self):
        data = LearnedState().to_dict()
        data["signal_weights"]["momentum"] = -0.1
        blob = json.dumps({"version": STORAGE_VERSION, "state": data}).encode()
        with pytest.raises(CorruptPersistedState):
            decode_learned_state(blob)

    def test_missing_field_rejected(self):
        data = LearnedState().to_dict()
        del data["learning_rate"]
        blob = json.dumps({"version": STORAGE_VERSION, "state": data}).encode()
        with pytest.raises(CorruptPersistedState):
            decode_learned_state(blob)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_empty_store(self, memory_store):
        assert await load_history(memory_store) == []
        assert await load_learned_state(memory_store) is None

    @pytest.mark.asyncio
    async def test_history_round_trip(self, memory_store, make_round):
        history = [make_round("1"), make_round("2", "3", "4", margins={"2": 0.0, "3": 1.0})]
        await save_history(memory_store, list(reversed(history)))
        assert await load_history(memory_store) == history

    @pytest.mark.asyncio
    async def test_learned_state_round_trip(self, memory_store):
        state = _state()
        await save_learned_state(memory_store, state)
        assert await load_learned_state(memory_store) == state

    @pytest.mark.asyncio
    async def test_version_mismatch_clears_everything(self, memory_store, make_round):
        await save_history(memory_store, [make_round("1")])
        await save_learned_state(memory_store, _state())
        await memory_store.save(VERSION_KEY, b"4.0")

        assert await load_history(memory_store) == []
        assert await load_learned_state(memory_store) is None
        assert memory_store.keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_history_discarded(self, memory_store):
        await memory_store.save(VERSION_KEY, STORAGE_VERSION.encode())
        await memory_store.save(ENTRIES_KEY, b"{broken")
        assert await load_history(memory_store) == []
        assert await memory_store.load(ENTRIES_KEY) is None

    @pytest.mark.asyncio
    async def test_corrupt_state_discarded(self, memory_store, make_round):
        await save_history(memory_store, [make_round("1")])
        await memory_store.save(LEARNED_STATE_KEY, b"[]")
        assert await load_learned_state(memory_store) is None
        assert await memory_store.load(LEARNED_STATE_KEY) is None
        assert len(await load_history(memory_store)) == 1


async def _rewrite_first_entry(store, make_round, **changes):
    await save_history(store, [make_round("1", "2", "3")])
    entries = json.loads((await store.load(ENTRIES_KEY)).decode())
    entries[0].update(changes)
    await store.save(ENTRIES_KEY, json.dumps(entries).encode())


class TestMalformedHistory:
    @pytest.mark.asyncio
    async def test_null_entry(self, memory_store):
        await memory_store.save(VERSION_KEY, STORAGE_VERSION.encode())
        await memory_store.save(ENTRIES_KEY, b"[null]")
        assert await load_history(memory_store) == []
        assert await memory_store.load(ENTRIES_KEY) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["margins", "implied_probabilities", "predicted_probabilities"])
    async def test_map_stored_as_list(self, memory_store, make_round, field):
        await _rewrite_first_entry(memory_store, make_round, **{field: [1.0, 2.0]})
        assert await load_history(memory_store) == []

    @pytest.mark.asyncio
    async def test_candidate_not_an_object(self, memory_store, make_round):
        await _rewrite_first_entry(memory_store, make_round, candidates=["1", "2"])
        assert await load_history(memory_store) == []

    @pytest.mark.asyncio
    async def test_bet_not_an_object(self, memory_store, make_round):
        await _rewrite_first_entry(memory_store, make_round, bet=["1", 100])
        assert await load_history(memory_store) == []

    @pytest.mark.asyncio
    async def test_session_loads_with_defaults(self, memory_store, make_round, test_settings):
        await _rewrite_first_entry(memory_store, make_round, margins=[1.0, 2.0])
        session = PredictorSession(memory_store, test_settings)
        assert await session.load() is None
        assert session.history == []

    def test_round_from_non_dict(self):
        with pytest.raises(CorruptPersistedState):
            RoundRecord.from_dict(None)


class TestSqlBlobStore:
    @pytest.mark.asyncio
    async def test_save_load_overwrite(self, sql_store):
        assert await sql_store.load("k") is None
        await sql_store.save("k", b"one")
        await sql_store.save("k", b"two")
        assert await sql_store.load("k") == b"two"

    @pytest.mark.asyncio
    async def test_delete(self, sql_store):
        await sql_store.save("k", b"one")
        await sql_store.delete("k")
        assert await sql_store.load("k") is None

    @pytest.mark.asyncio
    async def test_state_through_database(self, sql_store, make_round):
        history = [make_round("3", "1", "2")]
        await save_history(sql_store, history)
        await save_learned_state(sql_store, _state())
        assert await load_history(sql_store) == history
        assert (await load_learned_state(sql_store)).selected_strategy == "Value"
