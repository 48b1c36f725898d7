from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from shapely.geometry.base import BaseGeometry

from geo.bbox import BBox


class StoreError(RuntimeError):
    """The backing store refused an operation."""


class ScanTimedOut(StoreError):
    pass


@dataclass(frozen=True)
class PartitionSchema:
    geometry_column: str
    srid: int


@dataclass(frozen=True)
class StoredRow:
    """
    One row as written to a partition.

    `bbox` is the geometry's full extent (not just the tile it was assigned to);
    it is `None` only for rows in the default partition without a usable bbox.
    """

    row_id: str
    geometry: BaseGeometry | None
    bbox: BBox | None
    props: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RowRef:
    row_id: str
    partition: str


@dataclass(frozen=True)
class PartitionInfo:
    name: str
    indexed: bool


class PartitionStore(Protocol):
    """
    Storage collaborator interface.

    - InMemoryStore: dict-backed tables, STRtree bbox index
    - DuckDBStore: one DuckDB table per partition, bbox-column index
    """

    def create_partition(self, physical_name: str, schema: PartitionSchema) -> None: ...

    def create_spatial_index(self, physical_name: str, column: str) -> None: ...

    def write_row(self, physical_name: str, row: StoredRow) -> None: ...

    def scan_intersecting(
        self,
        physical_name: str,
        geometry: BaseGeometry,
        *,
        timeout_s: float | None = None,
    ) -> list[RowRef]: ...

    def list_partitions(self, prefix: str) -> list[PartitionInfo]: ...

    def partition_extent(self, physical_name: str) -> BBox | None: ...

    def row_ids(self, physical_name: str) -> list[str]: ...
