from __future__ import annotations

from typing import Any


class GridError(Exception):
    """Base class for tile-grid partitioning errors."""


class InvalidGeometry(GridError, ValueError):
    """
    Geometry (or query window) has no usable bounding box.

    On ingest this is recovered locally: the row goes to the default partition.
    On the query side it is surfaced to the caller.
    """


class ReferenceSystemMismatch(GridError, ValueError):
    def __init__(self, *, expected: int, actual: int | None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Geometry reference system {actual} does not match grid reference system {expected}"
        )


class QueryTooBroad(GridError, ValueError):
    def __init__(self, *, tile_count: int, limit: int):
        self.tile_count = tile_count
        self.limit = limit
        super().__init__(
            f"Query window spans {tile_count} tiles (limit {limit}); narrow the window"
        )


class PartitionCreateFailed(GridError, RuntimeError):
    def __init__(self, tile_key: str, reason: str):
        self.tile_key = tile_key
        super().__init__(f"Failed to create partition for tile {tile_key}: {reason}")


class RowWriteFailed(GridError, RuntimeError):
    def __init__(self, row_id: str, reason: str):
        self.row_id = row_id
        super().__init__(f"Failed to write row {row_id}: {reason}")


class BatchIngestFailed(RowWriteFailed):
    """
    A write failed part-way through a batch.

    `committed` lists the rows that were already written (and are visible);
    rows after `row_id` were not attempted.
    """

    def __init__(self, row_id: str, reason: str, *, committed: list[Any]):
        super().__init__(row_id, reason)
        self.committed = committed


class PartitionScanFailed(GridError, RuntimeError):
    def __init__(self, partition: str, reason: str):
        self.partition = partition
        super().__init__(f"Scan of partition {partition} failed: {reason}")


class QueryTimedOut(GridError, TimeoutError):
    def __init__(self, *, timeout_s: float, pending: int):
        self.timeout_s = timeout_s
        self.pending = pending
        super().__init__(
            f"Query timed out after {timeout_s}s with {pending} partition scan(s) pending"
        )
