from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any

from shapely.geometry.base import BaseGeometry

from geo.ops import geometry_bbox, to_shape
from partitioning.catalog import PartitionCatalog
from partitioning.errors import (
    PartitionScanFailed,
    QueryTimedOut,
    ReferenceSystemMismatch,
)
from partitioning.router import PartitionRouter
from partitioning.types import PartitionRecord, RowRef
from store.types import PartitionStore, ScanTimedOut, StoreError

logger = logging.getLogger(__name__)


class QueryPlanner:
    """
    Runs an intersection query as one exact-predicate scan per candidate partition.

    Either every candidate scan completes or the whole query fails; partial
    result sets are never returned.
    """

    def __init__(
        self, catalog: PartitionCatalog, router: PartitionRouter, store: PartitionStore
    ):
        self._catalog = catalog
        self._router = router
        self._store = store
        # One pool for the planner's lifetime; stores keep per-thread state
        # (DuckDB cursors), so worker threads are reused across queries.
        self._executor = ThreadPoolExecutor(
            max_workers=catalog.config.scan_workers,
            thread_name_prefix="tilegrid-scan",
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def plan(
        self,
        predicate_geometry: Any,
        *,
        srid: int | None = None,
        exclude_default: bool = False,
        timeout_s: float | None = None,
    ) -> list[RowRef]:
        """
        Rows whose geometry intersects `predicate_geometry`, sorted by row id.

        `srid=None` means the predicate is already in the grid's reference system.
        """
        cfg = self._catalog.config
        if srid is not None and srid != cfg.srid:
            raise ReferenceSystemMismatch(expected=cfg.srid, actual=srid)

        shape = to_shape(predicate_geometry)
        bbox = geometry_bbox(shape)
        keys = self._router.route(bbox, exclude_default=exclude_default)

        partitions: list[PartitionRecord] = []
        for key in sorted(keys):
            rec = self._catalog.get(key)
            if rec is not None:
                partitions.append(rec)
        if not partitions:
            return []

        timeout = timeout_s if timeout_s is not None else cfg.scan_timeout_s
        futures = [
            self._executor.submit(self._scan, p, shape, timeout) for p in partitions
        ]
        _done, pending = wait(futures, timeout=timeout)
        if pending:
            for f in pending:
                f.cancel()
            logger.error(
                "Query timed out after %ss; %d of %d scans pending",
                timeout,
                len(pending),
                len(futures),
            )
            raise QueryTimedOut(timeout_s=float(timeout or 0.0), pending=len(pending))

        merged: dict[str, RowRef] = {}
        for f in futures:
            for ref in f.result():
                seen = merged.get(ref.row_id)
                if seen is None:
                    merged[ref.row_id] = ref
                elif seen.partition != ref.partition:
                    logger.warning(
                        "Row %s found in both %s and %s",
                        ref.row_id,
                        seen.partition,
                        ref.partition,
                    )

        logger.debug(
            "Query bbox %s scanned %d partition(s), %d row(s)",
            bbox.as_tuple(),
            len(partitions),
            len(merged),
        )
        return [merged[k] for k in sorted(merged)]

    def _scan(
        self, partition: PartitionRecord, shape: BaseGeometry, timeout: float | None
    ) -> list[RowRef]:
        try:
            return self._store.scan_intersecting(
                partition.physical_name, shape, timeout_s=timeout
            )
        except ScanTimedOut as exc:
            raise QueryTimedOut(timeout_s=float(timeout or 0.0), pending=1) from exc
        except StoreError as exc:
            logger.error("Scan of %s failed: %s", partition.physical_name, exc)
            raise PartitionScanFailed(partition.physical_name, str(exc)) from exc
