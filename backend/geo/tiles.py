from __future__ import annotations

import math
import re
from typing import NamedTuple

from geo.bbox import BBox
from partitioning.errors import InvalidGeometry


# Quotients this close to an integer (in tile units) snap onto the tile edge.
_SNAP_EPS = 1e-9

# Tile indexes are stored as signed 32-bit ints by most backing stores.
_MIN_TILE_INDEX = -(2**31)
_MAX_TILE_INDEX = 2**31 - 1

# Postgres-style identifier limit; partition names must fit.
MAX_IDENTIFIER_LEN = 63

DEFAULT_TILE_KEY = "default"

_TILE_KEY_RE = re.compile(r"^(0|n?[1-9][0-9]*)_(0|n?[1-9][0-9]*)$")


class TileCoordinate(NamedTuple):
    tx: int
    ty: int


def _snap(q: float) -> float:
    r = round(q)
    if abs(q - r) <= _SNAP_EPS:
        return float(r)
    return q


def _tile_index(v: float, tile_size: float) -> int:
    return int(math.floor(_snap(float(v) / float(tile_size))))


def _check_finite(*values: float) -> None:
    if not all(math.isfinite(float(v)) for v in values):
        raise InvalidGeometry(f"Non-finite coordinate in {values!r}")


def tile_for_point(x: float, y: float, tile_size: float) -> TileCoordinate:
    """
    Tile of record for a bbox min corner.

    A corner lying exactly on a tile edge belongs to the tile starting at that edge
    (floor(50000 / 50000) == 1).
    """
    _check_finite(x, y)
    return TileCoordinate(_tile_index(x, tile_size), _tile_index(y, tile_size))


def _axis_range(
    lo: float, hi: float, tile_size: float, *, include_max_edge: bool
) -> tuple[int, int]:
    first = _tile_index(lo, tile_size)
    q = _snap(float(hi) / float(tile_size))
    last = int(math.floor(q))
    # Half-open convention: a max edge sitting on a boundary belongs to the lower tile.
    if not include_max_edge and hi > lo and q == last:
        last -= 1
    return first, max(first, last)


def tile_ranges(
    bbox: BBox, tile_size: float, *, include_max_edge: bool = False
) -> tuple[tuple[int, int], tuple[int, int]]:
    """
    Inclusive (first, last) tile index ranges covered by `bbox` on each axis.
    """
    # Check before normalizing: min()/max() silently drop NaN.
    _check_finite(*bbox.as_tuple())
    b = bbox.normalized()
    xr = _axis_range(b.xmin, b.xmax, tile_size, include_max_edge=include_max_edge)
    yr = _axis_range(b.ymin, b.ymax, tile_size, include_max_edge=include_max_edge)
    return xr, yr


def tile_count_for_bbox(
    bbox: BBox, tile_size: float, *, include_max_edge: bool = False
) -> int:
    (x0, x1), (y0, y1) = tile_ranges(bbox, tile_size, include_max_edge=include_max_edge)
    return (x1 - x0 + 1) * (y1 - y0 + 1)


def tiles_for_bbox(
    bbox: BBox, tile_size: float, *, include_max_edge: bool = False
) -> set[TileCoordinate]:
    """
    Every tile whose cell intersects `bbox` (not just the min-corner tile).

    Callers that may face very wide windows should check `tile_count_for_bbox` first.
    """
    (x0, x1), (y0, y1) = tile_ranges(bbox, tile_size, include_max_edge=include_max_edge)
    out: set[TileCoordinate] = set()
    for tx in range(x0, x1 + 1):
        for ty in range(y0, y1 + 1):
            out.add(TileCoordinate(tx, ty))
    return out


def tile_bbox(coord: TileCoordinate, tile_size: float) -> BBox:
    t = float(tile_size)
    return BBox(
        xmin=coord.tx * t,
        ymin=coord.ty * t,
        xmax=(coord.tx + 1) * t,
        ymax=(coord.ty + 1) * t,
    )


def _encode_index(v: int) -> str:
    return f"n{-v}" if v < 0 else str(v)


def _decode_index(s: str) -> int:
    return -int(s[1:]) if s.startswith("n") else int(s)


def tile_key(coord: TileCoordinate) -> str:
    """
    Canonical identifier-safe key, e.g. (0, 2) -> "0_2", (-3, 2) -> "n3_2".
    """
    for v in coord:
        if v < _MIN_TILE_INDEX or v > _MAX_TILE_INDEX:
            raise InvalidGeometry(f"Tile index out of range: {coord!r}")
    return f"{_encode_index(coord.tx)}_{_encode_index(coord.ty)}"


def parse_tile_key(key: str) -> TileCoordinate:
    m = _TILE_KEY_RE.match((key or "").strip())
    if m is None:
        raise ValueError(f"Invalid tile key: {key!r}")
    return TileCoordinate(_decode_index(m.group(1)), _decode_index(m.group(2)))


def physical_name(table: str, key: str) -> str:
    name = f"{table}_{key}"
    if len(name) > MAX_IDENTIFIER_LEN:
        raise InvalidGeometry(f"Partition name too long: {name!r}")
    return name
