from __future__ import annotations

import logging

from geo.bbox import BBox
from geo.tiles import (
    DEFAULT_TILE_KEY,
    TileCoordinate,
    tile_count_for_bbox,
    tile_key,
    tile_ranges,
)
from partitioning.catalog import PartitionCatalog
from partitioning.errors import InvalidGeometry, QueryTooBroad

logger = logging.getLogger(__name__)


class PartitionRouter:
    """
    Maps a query window to the tile keys whose partitions may hold matches.

    The result is a candidate set for pruning, never a verdict: callers still run
    the exact predicate on every candidate.
    """

    def __init__(self, catalog: PartitionCatalog):
        self._catalog = catalog

    def route(self, query_bbox: BBox, *, exclude_default: bool = False) -> frozenset[str]:
        cfg = self._catalog.config
        if not query_bbox.is_finite():
            raise InvalidGeometry(f"Query window is not finite: {query_bbox.as_tuple()!r}")
        q = query_bbox.normalized()

        # The breadth limit counts half-open tiles, so a window aligned to tile
        # boundaries is not charged for the row of tiles it only touches.
        n_tiles = tile_count_for_bbox(q, cfg.tile_size)
        if n_tiles > cfg.max_candidate_tiles:
            logger.warning(
                "Rejecting query window %s: %d tiles > limit %d",
                q.as_tuple(),
                n_tiles,
                cfg.max_candidate_tiles,
            )
            raise QueryTooBroad(tile_count=n_tiles, limit=cfg.max_candidate_tiles)

        # Closed ranges: the exact predicate counts boundary contact as a hit.
        (x0, x1), (y0, y1) = tile_ranges(q, cfg.tile_size, include_max_edge=True)
        # Rows live in their min-corner tile but may extend `spill` tiles past it,
        # so tiles below/left of the window can still hold intersecting rows.
        sx, sy = self._catalog.spill
        x0 -= sx
        y0 -= sy

        keys: set[str] = set()
        n_range = (x1 - x0 + 1) * (y1 - y0 + 1)
        if n_range <= len(self._catalog):
            for tx in range(x0, x1 + 1):
                for ty in range(y0, y1 + 1):
                    key = _tile_key_or_none(tx, ty)
                    if key is not None and self._catalog.get(key) is not None:
                        keys.add(key)
        else:
            for coord, rec in self._catalog.published_tiles():
                if x0 <= coord.tx <= x1 and y0 <= coord.ty <= y1:
                    keys.add(rec.tile_key)

        if not exclude_default:
            keys.add(DEFAULT_TILE_KEY)

        logger.debug(
            "Routed %s -> %d partition(s) (window tiles=%d, spill=%s)",
            q.as_tuple(),
            len(keys),
            n_tiles,
            (sx, sy),
        )
        return frozenset(keys)


def _tile_key_or_none(tx: int, ty: int) -> str | None:
    try:
        return tile_key(TileCoordinate(tx, ty))
    except InvalidGeometry:
        return None
