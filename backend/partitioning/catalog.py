from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable

from geo.bbox import BBox
from geo.tiles import (
    DEFAULT_TILE_KEY,
    TileCoordinate,
    parse_tile_key,
    physical_name,
    tile_for_point,
    tile_key,
)
from partitioning.config import GEOMETRY_COLUMN, GridConfig
from partitioning.errors import InvalidGeometry, PartitionCreateFailed
from partitioning.types import PartitionRecord
from store.types import PartitionSchema, PartitionStore, StoreError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartitionCatalog:
    """
    Authoritative tile key -> partition mapping.

    Only indexed records are published (visible to `get` / `lookup_partitions`);
    publishing happens after the store confirms the spatial index, which is the
    commit point of a partition. Creation of the same key is serialized by a
    per-key lock; different keys never wait on each other.

    The default partition is created on construction and is always present.
    """

    def __init__(self, store: PartitionStore, config: GridConfig):
        self._store = store
        self._config = config
        self._schema = PartitionSchema(geometry_column=GEOMETRY_COLUMN, srid=config.srid)
        self._lock = threading.RLock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._published: dict[str, PartitionRecord] = {}
        # Partitions found in the store without a confirmed index.
        self._pending: dict[str, PartitionRecord] = {}
        # How many tiles past its tile of record any stored bbox reaches, per axis.
        self._spill_x = 0
        self._spill_y = 0
        # row_id -> tile key of the one partition holding it.
        self._row_homes: dict[str, str] = {}
        self._default = self._create_default()

    @classmethod
    def load(cls, store: PartitionStore, config: GridConfig) -> "PartitionCatalog":
        """
        Build a catalog from the partitions already present in `store`.
        """
        catalog = cls(store, config)
        prefix = f"{config.table}_"
        n_published = 0
        n_pending = 0
        for info in store.list_partitions(prefix):
            key = info.name[len(prefix) :]
            if key == DEFAULT_TILE_KEY:
                catalog._note_homes(key, store.row_ids(info.name))
                continue
            try:
                coord = parse_tile_key(key)
            except ValueError:
                logger.warning("Ignoring table %s: suffix is not a tile key", info.name)
                continue
            rec = PartitionRecord(
                tile_key=key,
                physical_name=info.name,
                created_at=_utcnow(),
                indexed=info.indexed,
            )
            catalog._note_homes(key, store.row_ids(info.name))
            extent = store.partition_extent(info.name)
            if extent is not None:
                catalog.note_extent(coord, extent)
            with catalog._lock:
                if rec.indexed:
                    catalog._published[key] = rec
                    n_published += 1
                else:
                    catalog._pending[key] = rec
                    n_pending += 1
        logger.info(
            "Loaded partition catalog for %s: %d indexed, %d awaiting index, %d row(s), spill=%s",
            config.table,
            n_published,
            n_pending,
            len(catalog._row_homes),
            catalog.spill,
        )
        return catalog

    @property
    def config(self) -> GridConfig:
        return self._config

    @property
    def default(self) -> PartitionRecord:
        return self._default

    @property
    def spill(self) -> tuple[int, int]:
        with self._lock:
            return self._spill_x, self._spill_y

    def __len__(self) -> int:
        return len(self._published)

    def _create_default(self) -> PartitionRecord:
        name = physical_name(self._config.table, DEFAULT_TILE_KEY)
        self._build_partition(DEFAULT_TILE_KEY, name, create=True)
        return PartitionRecord(
            tile_key=DEFAULT_TILE_KEY,
            physical_name=name,
            created_at=_utcnow(),
            indexed=True,
        )

    def _build_partition(self, key: str, name: str, *, create: bool) -> None:
        try:
            if create:
                self._store.create_partition(name, self._schema)
            self._store.create_spatial_index(name, self._schema.geometry_column)
        except StoreError as exc:
            logger.error("Partition %s (tile %s) could not be built: %s", name, key, exc)
            raise PartitionCreateFailed(key, str(exc)) from exc

    def _key_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def ensure_partition(self, key: str) -> PartitionRecord:
        """
        Return the partition for `key`, creating and indexing it first if needed.
        """
        if key == DEFAULT_TILE_KEY:
            return self._default
        # Canonical form only; raises ValueError otherwise.
        parse_tile_key(key)

        rec = self._published.get(key)
        if rec is not None:
            return rec

        with self._key_lock(key):
            rec = self._published.get(key)
            if rec is not None:
                return rec

            pending = self._pending.get(key)
            if pending is not None:
                self._build_partition(key, pending.physical_name, create=False)
                rec = replace(pending, indexed=True)
            else:
                name = physical_name(self._config.table, key)
                self._build_partition(key, name, create=True)
                rec = PartitionRecord(
                    tile_key=key, physical_name=name, created_at=_utcnow(), indexed=True
                )

            with self._lock:
                self._published[key] = rec
                self._pending.pop(key, None)
            logger.info("Created partition %s for tile %s", rec.physical_name, key)
            return rec

    def get(self, key: str) -> PartitionRecord | None:
        if key == DEFAULT_TILE_KEY:
            return self._default
        return self._published.get(key)

    def lookup_partitions(self, coords: Iterable[TileCoordinate]) -> set[PartitionRecord]:
        """
        Indexed partitions for `coords`. Read-only: never creates anything.
        """
        out: set[PartitionRecord] = set()
        for c in coords:
            try:
                key = tile_key(c)
            except InvalidGeometry:
                # Outside the addressable grid; nothing can be stored there.
                continue
            rec = self._published.get(key)
            if rec is not None:
                out.add(rec)
        return out

    def published_tiles(self) -> list[tuple[TileCoordinate, PartitionRecord]]:
        with self._lock:
            records = list(self._published.values())
        return [(parse_tile_key(r.tile_key), r) for r in records]

    def list_all(self) -> list[PartitionRecord]:
        with self._lock:
            records = sorted(self._published.values(), key=lambda r: r.tile_key)
        return [self._default, *records]

    def note_extent(self, coord: TileCoordinate, bbox: BBox) -> None:
        """
        Record that a row stored under `coord` reaches up to `bbox`'s max corner.
        """
        far = tile_for_point(bbox.xmax, bbox.ymax, self._config.tile_size)
        dx = max(0, far.tx - coord.tx)
        dy = max(0, far.ty - coord.ty)
        with self._lock:
            if dx > self._spill_x or dy > self._spill_y:
                self._spill_x = max(self._spill_x, dx)
                self._spill_y = max(self._spill_y, dy)
                logger.debug("Spill widened to (%d, %d)", self._spill_x, self._spill_y)

    def _note_homes(self, key: str, row_ids: Iterable[str]) -> None:
        with self._lock:
            for rid in row_ids:
                prev = self._row_homes.setdefault(rid, key)
                if prev != key:
                    logger.warning("Row %s is stored in both tile %s and tile %s", rid, prev, key)

    def home_of(self, row_id: str) -> str | None:
        """Tile key of the partition holding `row_id`, if any."""
        return self._row_homes.get(row_id)

    def claim_row(self, row_id: str, key: str) -> str | None:
        """
        Reserve `row_id` for the partition of `key`.

        Returns the tile key already holding the row (nothing is reserved then),
        or None once the reservation is made.
        """
        with self._lock:
            prev = self._row_homes.get(row_id)
            if prev is not None:
                return prev
            self._row_homes[row_id] = key
            return None

    def release_row(self, row_id: str, key: str) -> None:
        """Drop a reservation whose write did not happen."""
        with self._lock:
            if self._row_homes.get(row_id) == key:
                del self._row_homes[row_id]
