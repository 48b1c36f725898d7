from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from geo.bbox import BBox
from partitioning.catalog import PartitionCatalog
from partitioning.config import GridConfig
from partitioning.ingest import IngestCoordinator
from partitioning.planner import QueryPlanner
from partitioning.router import PartitionRouter
from partitioning.types import CommitResult, GeometryRecord, PartitionRecord, RowRef
from store.types import PartitionStore


@dataclass
class GridEngine:
    """
    Administrative surface of the tile grid over one store.

    Build it with `GridEngine.open(...)`, which loads the catalog from whatever
    partitions the store already has.
    """

    config: GridConfig
    store: PartitionStore
    catalog: PartitionCatalog
    router: PartitionRouter
    ingestor: IngestCoordinator
    planner: QueryPlanner

    @classmethod
    def open(cls, config: GridConfig, store: PartitionStore) -> "GridEngine":
        catalog = PartitionCatalog.load(store, config)
        router = PartitionRouter(catalog)
        return cls(
            config=config,
            store=store,
            catalog=catalog,
            router=router,
            ingestor=IngestCoordinator(catalog, store),
            planner=QueryPlanner(catalog, router, store),
        )

    def close(self) -> None:
        self.planner.close()

    def ensure_partition(self, tile_key: str) -> PartitionRecord:
        return self.catalog.ensure_partition(tile_key)

    def list_all(self) -> list[PartitionRecord]:
        return self.catalog.list_all()

    def route(self, query_bbox: BBox, *, exclude_default: bool = False) -> frozenset[str]:
        return self.router.route(query_bbox, exclude_default=exclude_default)

    def ingest(self, record: GeometryRecord) -> CommitResult:
        return self.ingestor.ingest(record)

    def ingest_many(self, records: Iterable[GeometryRecord]) -> list[CommitResult]:
        return self.ingestor.ingest_many(records)

    def plan(
        self,
        predicate_geometry: Any,
        *,
        srid: int | None = None,
        exclude_default: bool = False,
        timeout_s: float | None = None,
    ) -> list[RowRef]:
        return self.planner.plan(
            predicate_geometry,
            srid=srid,
            exclude_default=exclude_default,
            timeout_s=timeout_s,
        )
