from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from store.types import RowRef

__all__ = ["CommitResult", "GeometryRecord", "PartitionRecord", "RowRef"]


@dataclass(frozen=True)
class PartitionRecord:
    """
    Catalog entry for one physical partition.

    `tile_key` and `physical_name` never change once created; `indexed` only goes
    False -> True. Records with `indexed=False` are never handed to readers.
    """

    tile_key: str
    physical_name: str
    created_at: datetime
    indexed: bool = False


@dataclass(frozen=True)
class GeometryRecord:
    row_id: str
    # shapely geometry, WKB bytes, WKT text or None
    geometry: Any
    srid: int | None
    props: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommitResult:
    row_id: str
    tile_key: str
    physical_name: str
    # Set when the row was rerouted to the default partition.
    fallback_reason: str | None = None

    @property
    def in_default(self) -> bool:
        return self.fallback_reason is not None
