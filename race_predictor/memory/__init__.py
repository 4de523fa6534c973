"""Memory module: learned state and its persistence."""

from race_predictor.memory.state import (
    STORAGE_VERSION,
    CalibrationSnapshot,
    LearnedState,
    SignalWeights,
    decode_learned_state,
    default_learned_state,
    encode_learned_state,
)
from race_predictor.memory.store import (
    ENTRIES_KEY,
    LEARNED_STATE_KEY,
    VERSION_KEY,
    BlobStore,
    InMemoryBlobStore,
    SqlBlobStore,
    clear_all_data,
    load_history,
    load_learned_state,
    save_history,
    save_learned_state,
)

__all__ = [
    "STORAGE_VERSION",
    "CalibrationSnapshot",
    "LearnedState",
    "SignalWeights",
    "decode_learned_state",
    "default_learned_state",
    "encode_learned_state",
    "ENTRIES_KEY",
    "LEARNED_STATE_KEY",
    "VERSION_KEY",
    "BlobStore",
    "InMemoryBlobStore",
    "SqlBlobStore",
    "clear_all_data",
    "load_history",
    "load_learned_state",
    "save_history",
    "save_learned_state",
]
