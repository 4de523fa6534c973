"""Key/value blob stores and the persistence boundary for history and learned state.

The core only ever sees `load(key) -> bytes | None` and `save(key, bytes)`.
Stored data is versioned JSON; a version mismatch discards everything and
starts over from defaults.
"""

import json
import logging
from typing import Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from race_predictor.errors import CorruptPersistedState
from race_predictor.memory.state import (
    STORAGE_VERSION,
    LearnedState,
    decode_learned_state,
    encode_learned_state,
)
from race_predictor.models.settings import StoredBlob
from race_predictor.rounds import RoundRecord

logger = logging.getLogger(__name__)

VERSION_KEY = "race_predictor_version"
ENTRIES_KEY = "race_predictor_entries"
LEARNED_STATE_KEY = "race_predictor_learned_state"
ALL_KEYS = (VERSION_KEY, ENTRIES_KEY, LEARNED_STATE_KEY)


class BlobStore(Protocol):
    """Opaque byte storage keyed by string."""

    async def load(self, key: str) -> Optional[bytes]: ...

    async def save(self, key: str, data: bytes) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryBlobStore:
    """Dict-backed store for tests and embedding."""

    def __init__(self, initial: Optional[dict[str, bytes]] = None):
        self._data: dict[str, bytes] = dict(initial or {})

    async def load(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def save(self, key: str, data: bytes) -> None:
        self._data[key] = bytes(data)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class SqlBlobStore:
    """Blob store on the `stored_blobs` table, one transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load(self, key: str) -> Optional[bytes]:
        async with self.session_factory() as db:
            result = await db.execute(select(StoredBlob.value).where(StoredBlob.key == key))
            return result.scalar_one_or_none()

    async def save(self, key: str, data: bytes) -> None:
        async with self.session_factory() as db:
            result = await db.execute(select(StoredBlob).where(StoredBlob.key == key))
            blob = result.scalar_one_or_none()
            if blob:
                blob.value = data
            else:
                db.add(StoredBlob(key=key, value=data))
            await db.commit()

    async def delete(self, key: str) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(StoredBlob).where(StoredBlob.key == key))
            await db.commit()


# ──────────────────────────────────────────────
# Persistence boundary
# ──────────────────────────────────────────────

async def _stored_version(store: BlobStore) -> Optional[str]:
    raw = await store.load(VERSION_KEY)
    if raw is None:
        return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


async def clear_all_data(store: BlobStore) -> None:
    for key in ALL_KEYS:
        await store.delete(key)
    logger.info("Cleared all stored predictor data")


async def load_history(store: BlobStore) -> list[RoundRecord]:
    """Load round history oldest first; [] on absent, corrupt, or stale data."""
    version = await _stored_version(store)
    if version != STORAGE_VERSION:
        if version is not None:
            logger.warning(
                "Stored data version %s does not match %s, discarding history",
                version, STORAGE_VERSION,
            )
            await clear_all_data(store)
        return []

    raw = await store.load(ENTRIES_KEY)
    if raw is None:
        return []

    try:
        entries = json.loads(raw.decode("utf-8"))
        if not isinstance(entries, list):
            raise CorruptPersistedState("History payload is not a list")
        history = [RoundRecord.from_dict(e) for e in entries]
    except (CorruptPersistedState, UnicodeDecodeError, json.JSONDecodeError,
            KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Stored history is corrupt, discarding: %s", e)
        await store.delete(ENTRIES_KEY)
        return []

    return sorted(history, key=lambda r: r.timestamp)


async def save_history(store: BlobStore, history: list[RoundRecord]) -> None:
    payload = json.dumps([r.to_dict() for r in history]).encode("utf-8")
    await store.save(VERSION_KEY, STORAGE_VERSION.encode("utf-8"))
    await store.save(ENTRIES_KEY, payload)


async def load_learned_state(store: BlobStore) -> Optional[LearnedState]:
    """Load the persisted learned state, or None if absent or unusable."""
    version = await _stored_version(store)
    if version != STORAGE_VERSION:
        return None

    raw = await store.load(LEARNED_STATE_KEY)
    if raw is None:
        return None

    try:
        return decode_learned_state(raw)
    except CorruptPersistedState as e:
        logger.warning("Stored learned state is unusable, resetting to defaults: %s", e)
        await store.delete(LEARNED_STATE_KEY)
        return None


async def save_learned_state(store: BlobStore, state: LearnedState) -> None:
    await store.save(VERSION_KEY, STORAGE_VERSION.encode("utf-8"))
    await store.save(LEARNED_STATE_KEY, encode_learned_state(state))
