from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from shapely.geometry.base import BaseGeometry

from geo.bbox import BBox
from geo.ops import geometry_bbox, to_shape
from geo.tiles import DEFAULT_TILE_KEY, TileCoordinate, physical_name, tile_for_point, tile_key
from partitioning.catalog import PartitionCatalog
from partitioning.errors import (
    BatchIngestFailed,
    InvalidGeometry,
    ReferenceSystemMismatch,
    RowWriteFailed,
)
from partitioning.types import CommitResult, GeometryRecord, PartitionRecord
from store.types import PartitionStore, StoreError, StoredRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _RowPlan:
    record: GeometryRecord
    shape: BaseGeometry | None
    bbox: BBox | None
    coord: TileCoordinate | None
    tile_key: str
    fallback_reason: str | None


class IngestCoordinator:
    """
    Writes each geometry into the partition of its bbox min-corner tile.

    Rows without a usable bbox land in the default partition instead of being
    rejected. A reference system mismatch or a partition that cannot be created
    is never recovered here.
    """

    def __init__(self, catalog: PartitionCatalog, store: PartitionStore):
        self._catalog = catalog
        self._store = store

    def _plan_row(self, record: GeometryRecord) -> _RowPlan:
        cfg = self._catalog.config
        if record.geometry is not None and record.srid != cfg.srid:
            raise ReferenceSystemMismatch(expected=cfg.srid, actual=record.srid)

        shape: BaseGeometry | None = None
        try:
            shape = to_shape(record.geometry)
            bbox = geometry_bbox(shape)
            coord = tile_for_point(bbox.xmin, bbox.ymin, cfg.tile_size)
            key = tile_key(coord)
            physical_name(cfg.table, key)
        except InvalidGeometry as exc:
            logger.warning(
                "Row %s routed to default partition: %s", record.row_id, exc
            )
            return _RowPlan(
                record=record,
                shape=shape,
                bbox=None,
                coord=None,
                tile_key=DEFAULT_TILE_KEY,
                fallback_reason=str(exc),
            )
        return _RowPlan(
            record=record,
            shape=shape,
            bbox=bbox,
            coord=coord,
            tile_key=key,
            fallback_reason=None,
        )

    def _check_unhomed(self, row_id: str) -> None:
        home = self._catalog.home_of(row_id)
        if home is not None:
            raise RowWriteFailed(row_id, f"row already stored in tile {home}")

    def _commit(self, plan: _RowPlan, partition: PartitionRecord) -> CommitResult:
        row_id = plan.record.row_id
        # A row lives in exactly one partition, whatever tile a rewrite would pick.
        home = self._catalog.claim_row(row_id, partition.tile_key)
        if home is not None:
            logger.error("Row %s is already stored in tile %s", row_id, home)
            raise RowWriteFailed(row_id, f"row already stored in tile {home}")
        if plan.coord is not None and plan.bbox is not None:
            # Widen routing before the row becomes visible.
            self._catalog.note_extent(plan.coord, plan.bbox)
        row = StoredRow(
            row_id=row_id,
            geometry=plan.shape,
            bbox=plan.bbox,
            props=dict(plan.record.props or {}),
        )
        try:
            self._store.write_row(partition.physical_name, row)
        except StoreError as exc:
            self._catalog.release_row(row_id, partition.tile_key)
            logger.error(
                "Write of row %s to %s failed: %s",
                row_id,
                partition.physical_name,
                exc,
            )
            raise RowWriteFailed(row_id, str(exc)) from exc
        return CommitResult(
            row_id=row_id,
            tile_key=partition.tile_key,
            physical_name=partition.physical_name,
            fallback_reason=plan.fallback_reason,
        )

    def ingest(self, record: GeometryRecord) -> CommitResult:
        plan = self._plan_row(record)
        self._check_unhomed(record.row_id)
        partition = self._catalog.ensure_partition(plan.tile_key)
        return self._commit(plan, partition)

    def ingest_many(self, records: Iterable[GeometryRecord]) -> list[CommitResult]:
        """
        Ingest a batch.

        Every partition the batch needs is ensured before the first write, so a
        partition that fails to be created leaves no row of the batch visible.
        Row ids repeated in the batch or already stored fail the batch up front.
        """
        plans = [self._plan_row(r) for r in records]
        seen: set[str] = set()
        for plan in plans:
            rid = plan.record.row_id
            if rid in seen:
                raise BatchIngestFailed(rid, "row id repeated within the batch", committed=[])
            seen.add(rid)
            try:
                self._check_unhomed(rid)
            except RowWriteFailed as exc:
                raise BatchIngestFailed(rid, str(exc), committed=[]) from exc

        partitions: dict[str, PartitionRecord] = {}
        for plan in plans:
            if plan.tile_key not in partitions:
                partitions[plan.tile_key] = self._catalog.ensure_partition(plan.tile_key)

        results: list[CommitResult] = []
        for plan in plans:
            try:
                results.append(self._commit(plan, partitions[plan.tile_key]))
            except RowWriteFailed as exc:
                raise BatchIngestFailed(
                    plan.record.row_id, str(exc), committed=list(results)
                ) from exc

        n_default = sum(1 for r in results if r.in_default)
        logger.info(
            "Ingested %d row(s) into %d partition(s); %d to default",
            len(results),
            len(partitions),
            n_default,
        )
        return results
