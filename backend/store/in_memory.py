from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from geo.bbox import BBox
from store.types import PartitionInfo, PartitionSchema, RowRef, StoredRow, StoreError


@dataclass
class _Table:
    schema: PartitionSchema
    rows: dict[str, StoredRow] = field(default_factory=dict)
    indexed: bool = False
    # STRtree over non-null geometries; rebuilt lazily after writes.
    _tree: STRtree | None = field(default=None, repr=False)
    _tree_ids: list[str] = field(default_factory=list, repr=False)
    _dirty: bool = field(default=True, repr=False)

    def tree(self) -> tuple[STRtree, list[str]]:
        if self._tree is None or self._dirty:
            ids = [rid for rid, r in self.rows.items() if r.geometry is not None]
            geoms = [self.rows[rid].geometry for rid in ids]
            self._tree = STRtree(geoms)
            self._tree_ids = ids
            self._dirty = False
        return self._tree, self._tree_ids


class InMemoryStore:
    """
    Dict-backed partition store.

    Each partition is a table of rows keyed by row id; `create_spatial_index`
    enables an STRtree lookup, otherwise scans fall back to a full pass.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, _Table] = {}

    def _table(self, name: str) -> _Table:
        t = self._tables.get(name)
        if t is None:
            raise StoreError(f"No such partition: {name}")
        return t

    def create_partition(self, physical_name: str, schema: PartitionSchema) -> None:
        with self._lock:
            self._tables.setdefault(physical_name, _Table(schema=schema))

    def create_spatial_index(self, physical_name: str, column: str) -> None:
        with self._lock:
            t = self._table(physical_name)
            if column != t.schema.geometry_column:
                raise StoreError(f"{physical_name} has no geometry column {column!r}")
            t.indexed = True
            t._dirty = True

    def write_row(self, physical_name: str, row: StoredRow) -> None:
        with self._lock:
            t = self._table(physical_name)
            if row.row_id in t.rows:
                raise StoreError(f"Duplicate row id {row.row_id!r} in {physical_name}")
            t.rows[row.row_id] = row
            t._dirty = True

    def scan_intersecting(
        self,
        physical_name: str,
        geometry: BaseGeometry,
        *,
        timeout_s: float | None = None,
    ) -> list[RowRef]:
        with self._lock:
            t = self._table(physical_name)
            if t.indexed:
                tree, ids = t.tree()
                idxs = _to_int_list(tree.query(geometry, predicate="intersects"))
                hits = [ids[i] for i in idxs]
            else:
                hits = [
                    rid
                    for rid, r in t.rows.items()
                    if r.geometry is not None and r.geometry.intersects(geometry)
                ]
        return [RowRef(row_id=rid, partition=physical_name) for rid in sorted(hits)]

    def list_partitions(self, prefix: str) -> list[PartitionInfo]:
        with self._lock:
            return [
                PartitionInfo(name=name, indexed=t.indexed)
                for name, t in sorted(self._tables.items())
                if name.startswith(prefix)
            ]

    def partition_extent(self, physical_name: str) -> BBox | None:
        with self._lock:
            boxes = [r.bbox for r in self._table(physical_name).rows.values() if r.bbox]
        if not boxes:
            return None
        return BBox(
            xmin=min(b.xmin for b in boxes),
            ymin=min(b.ymin for b in boxes),
            xmax=max(b.xmax for b in boxes),
            ymax=max(b.ymax for b in boxes),
        )

    def row_ids(self, physical_name: str) -> list[str]:
        with self._lock:
            return sorted(self._table(physical_name).rows.keys())


def _to_int_list(idxs: Any) -> list[int]:
    if idxs is None:
        return []
    return [int(i) for i in idxs]
