from __future__ import annotations

import threading

from partitioning.config import grid_config_from_env
from partitioning.engine import GridEngine
from store.config import duckdb_path, store_kind
from store.duckdb import DuckDBStore
from store.in_memory import InMemoryStore
from store.types import PartitionStore

_ENGINE: GridEngine | None = None
_ENGINE_LOCK = threading.RLock()


def _store_from_env() -> PartitionStore:
    if store_kind() == "duckdb":
        return DuckDBStore(duckdb_path())
    return InMemoryStore()


def get_engine() -> GridEngine:
    """
    Process-wide engine, built from `TILEGRID_*` env vars on first use.
    """
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is None:
            _ENGINE = GridEngine.open(grid_config_from_env(), _store_from_env())
        return _ENGINE


def set_engine(engine: GridEngine | None) -> None:
    global _ENGINE
    with _ENGINE_LOCK:
        _ENGINE = engine


def reset_engine() -> None:
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is not None:
            _ENGINE.close()
            if isinstance(_ENGINE.store, DuckDBStore):
                _ENGINE.store.close()
        _ENGINE = None
