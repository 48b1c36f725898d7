from __future__ import annotations

import math

import pytest
from shapely.geometry import LineString, Point, box

from geo.bbox import BBox
from partitioning.config import GridConfig
from partitioning.engine import GridEngine
from partitioning.errors import InvalidGeometry, QueryTooBroad
from partitioning.types import GeometryRecord
from store.in_memory import InMemoryStore

T = 50_000.0


class SpyStore(InMemoryStore):
    def __init__(self):
        super().__init__()
        self.scanned: list[str] = []

    def scan_intersecting(self, physical_name, geometry, *, timeout_s=None):
        self.scanned.append(physical_name)
        return super().scan_intersecting(physical_name, geometry, timeout_s=timeout_s)


def _rec(row_id: str, geom, srid: int) -> GeometryRecord:
    return GeometryRecord(row_id=row_id, geometry=geom, srid=srid)


def test_window_inside_one_tile_yields_that_tile_plus_default(engine, grid_config):
    engine.ingest(_rec("a", Point(60_000, 110_000), grid_config.srid))
    engine.ingest(_rec("b", Point(160_000, 110_000), grid_config.srid))

    keys = engine.route(BBox(55_000.0, 105_000.0, 70_000.0, 120_000.0))
    assert keys == {"1_2", "default"}

    keys = engine.route(BBox(55_000.0, 105_000.0, 70_000.0, 120_000.0), exclude_default=True)
    assert keys == {"1_2"}


def test_tiles_without_partitions_are_skipped(engine):
    assert engine.route(BBox(0.0, 0.0, 10 * T, 10 * T)) == {"default"}
    assert engine.route(BBox(0.0, 0.0, 10 * T, 10 * T), exclude_default=True) == frozenset()


def test_point_window_routes_by_floor_division(engine, grid_config):
    engine.ingest(_rec("edge", Point(50_000, 50_000), grid_config.srid))
    assert engine.route(BBox(50_000.0, 50_000.0, 50_000.0, 50_000.0)) == {"1_1", "default"}


def test_boundary_spanning_geometry_and_window(engine, grid_config):
    # Geometry A spans the x=50000 edge between tiles 0_2 and 1_2.
    a = box(49_990, 112_030, 50_010, 112_050)
    res = engine.ingest(_rec("A", a, grid_config.srid))
    assert res.tile_key == "0_2"
    engine.ingest(_rec("B", Point(75_000, 125_000), grid_config.srid))

    keys = engine.route(BBox(49_995.0, 112_035.0, 50_005.0, 112_045.0))
    assert keys == {"0_2", "1_2", "default"}

    # A window entirely on the 1_2 side still reaches A's tile of record.
    keys = engine.route(BBox(50_005.0, 112_035.0, 50_008.0, 112_045.0), exclude_default=True)
    assert "0_2" in keys


def test_large_geometry_is_routable_from_far_side(engine, grid_config):
    # Tile of record 0_0; the line reaches into tile 3_0.
    line = LineString([(1_000, 1_000), (170_000, 2_000)])
    assert engine.ingest(_rec("long", line, grid_config.srid)).tile_key == "0_0"

    keys = engine.route(BBox(160_000.0, 0.0, 165_000.0, 5_000.0), exclude_default=True)
    assert keys == {"0_0"}
    assert [r.row_id for r in engine.plan(box(160_000, 0, 165_000, 5_000))] == ["long"]


def test_too_broad_window_fails_fast_without_touching_partitions(grid_config):
    store = SpyStore()
    engine = GridEngine.open(grid_config, store)
    engine.ingest(_rec("a", Point(10, 10), grid_config.srid))

    # 150 x 100 = 15,000 tiles against the default 10,000 limit.
    wide = BBox(0.0, 0.0, 150 * T - 1, 100 * T - 1)
    with pytest.raises(QueryTooBroad) as ei:
        engine.route(wide)
    assert ei.value.tile_count == 15_000
    assert ei.value.limit == 10_000

    with pytest.raises(QueryTooBroad):
        engine.plan(box(*wide.as_tuple()))
    assert store.scanned == []


def test_safety_limit_is_configurable(store, grid_config):
    cfg = GridConfig(tile_size=T, srid=grid_config.srid, max_candidate_tiles=4)
    engine = GridEngine.open(cfg, store)
    engine.route(BBox(0.0, 0.0, 2 * T - 1, 2 * T - 1))
    with pytest.raises(QueryTooBroad):
        engine.route(BBox(0.0, 0.0, 3 * T - 1, 2 * T - 1))


def test_aligned_window_at_the_limit_is_not_too_broad(engine, grid_config):
    # Max edges on tile boundaries: exactly 100 x 100 tiles, equal to the limit.
    engine.ingest(_rec("corner", Point(100 * T, 100 * T), grid_config.srid))
    keys = engine.route(BBox(0.0, 0.0, 100 * T, 100 * T), exclude_default=True)
    # Boundary contact still routes to the tile across the edge.
    assert keys == {"100_100"}

    with pytest.raises(QueryTooBroad) as ei:
        engine.route(BBox(0.0, 0.0, 100 * T + 1, 100 * T))
    assert ei.value.tile_count == 101 * 100


def test_sparse_catalog_with_wide_window(engine, grid_config):
    engine.ingest(_rec("near", Point(10, 10), grid_config.srid))
    engine.ingest(_rec("far", Point(95 * T + 10, 95 * T + 10), grid_config.srid))
    engine.ingest(_rec("outside", Point(-5 * T, 10), grid_config.srid))

    keys = engine.route(BBox(0.0, 0.0, 99 * T, 99 * T), exclude_default=True)
    assert keys == {"0_0", "95_95"}


def test_non_finite_window_is_invalid(engine):
    with pytest.raises(InvalidGeometry):
        engine.route(BBox(0.0, 0.0, math.nan, 1.0))
