from __future__ import annotations

import os


def duckdb_threads() -> int:
    raw = (os.getenv("TILEGRID_DUCKDB_THREADS") or "").strip()
    if raw:
        try:
            return max(1, int(raw))
        except ValueError:
            pass
    return max(1, int(os.cpu_count() or 1))


def store_kind() -> str:
    n = (os.getenv("TILEGRID_STORE") or "in_memory").strip().lower()
    if n in {"duckdb", "in_memory"}:
        return n
    raise ValueError(f"Unknown TILEGRID_STORE: {n!r} (expected 'duckdb' or 'in_memory')")


def duckdb_path() -> str:
    return (os.getenv("TILEGRID_DUCKDB_PATH") or "").strip() or ":memory:"
