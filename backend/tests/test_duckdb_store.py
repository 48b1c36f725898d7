from __future__ import annotations

import pytest
from shapely.geometry import LineString, Point, box

from geo.bbox import BBox
from partitioning.config import GEOMETRY_COLUMN
from partitioning.engine import GridEngine
from partitioning.errors import RowWriteFailed
from partitioning.types import GeometryRecord
import store.duckdb as duckdb_module
from store.duckdb import DuckDBStore
from store.types import PartitionSchema, StoredRow, StoreError


@pytest.fixture
def duck():
    s = DuckDBStore(":memory:", threads=2)
    yield s
    s.close()


def test_store_primitives_roundtrip(duck):
    schema = PartitionSchema(geometry_column=GEOMETRY_COLUMN, srid=25833)
    duck.create_partition("features_0_0", schema)
    duck.create_partition("features_0_0", schema)  # idempotent
    assert [(p.name, p.indexed) for p in duck.list_partitions("features_")] == [
        ("features_0_0", False)
    ]

    duck.create_spatial_index("features_0_0", GEOMETRY_COLUMN)
    assert duck.list_partitions("features_")[0].indexed is True

    diag = LineString([(0, 0), (40_000, 40_000)])
    duck.write_row(
        "features_0_0",
        StoredRow(row_id="diag", geometry=diag, bbox=BBox.from_bounds(diag.bounds), props={"k": "v"}),
    )
    duck.write_row(
        "features_0_0",
        StoredRow(row_id="pt", geometry=Point(5, 5), bbox=BBox(5, 5, 5, 5)),
    )

    # bbox prefilter alone would return "diag" here; the exact test drops it
    assert duck.scan_intersecting("features_0_0", box(30_000, 1_000, 39_000, 5_000)) == []
    hits = duck.scan_intersecting("features_0_0", box(0, 0, 10, 10))
    assert [r.row_id for r in hits] == ["diag", "pt"]
    assert duck.partition_extent("features_0_0").as_tuple() == (0.0, 0.0, 40_000.0, 40_000.0)
    assert duck.row_ids("features_0_0") == ["diag", "pt"]


def test_store_errors_are_wrapped(duck):
    with pytest.raises(StoreError):
        duck.write_row("features_9_9", StoredRow(row_id="x", geometry=None, bbox=None))
    with pytest.raises(StoreError):
        duck.create_partition("bad name; drop", PartitionSchema(GEOMETRY_COLUMN, 25833))


def test_default_rows_without_bbox_are_still_scanned(duck):
    duck.create_partition("features_default", PartitionSchema(GEOMETRY_COLUMN, 25833))
    duck.write_row("features_default", StoredRow(row_id="nobox", geometry=Point(1, 1), bbox=None))
    duck.write_row("features_default", StoredRow(row_id="null", geometry=None, bbox=None))
    assert [r.row_id for r in duck.scan_intersecting("features_default", box(0, 0, 2, 2))] == ["nobox"]
    assert duck.partition_extent("features_default") is None


def test_engine_over_duckdb_end_to_end(duck, grid_config):
    engine = GridEngine.open(grid_config, duck)
    results = engine.ingest_many(
        [
            GeometryRecord("A", box(49_990, 112_030, 50_010, 112_050), grid_config.srid),
            GeometryRecord("B", Point(75_000, 125_000), grid_config.srid),
            GeometryRecord("N", None, grid_config.srid),
        ]
    )
    assert [r.tile_key for r in results] == ["0_2", "1_2", "default"]
    assert engine.route(BBox(49_995.0, 112_035.0, 50_005.0, 112_045.0)) == {"0_2", "1_2", "default"}
    refs = engine.plan(box(49_995, 112_035, 50_005, 112_045))
    assert [(r.row_id, r.partition) for r in refs] == [("A", "features_0_2")]

    with pytest.raises(RowWriteFailed):
        engine.ingest(GeometryRecord("A", Point(49_995, 112_040), grid_config.srid))


def test_catalog_reloads_from_duckdb_file(tmp_path, grid_config):
    path = str(tmp_path / "grid.duckdb")
    first = DuckDBStore(path, threads=1)
    engine = GridEngine.open(grid_config, first)
    engine.ingest(GeometryRecord("long", LineString([(1_000, 1_000), (170_000, 2_000)]), grid_config.srid))
    engine.ingest(GeometryRecord("p", Point(260_000, 10), grid_config.srid))
    first.close()

    second = DuckDBStore(path, threads=1)
    try:
        reopened = GridEngine.open(grid_config, second)
        assert [r.tile_key for r in reopened.list_all()] == ["default", "0_0", "5_0"]
        assert reopened.catalog.spill == (3, 0)
        refs = reopened.plan(box(160_000, 0, 165_000, 5_000), exclude_default=True)
        assert [r.row_id for r in refs] == ["long"]
        # Row homes are rebuilt from the stored partitions.
        assert reopened.catalog.home_of("p") == "5_0"
        with pytest.raises(RowWriteFailed):
            reopened.ingest(GeometryRecord("long", Point(10, 10), grid_config.srid))
    finally:
        second.close()


class _LateTimer:
    """Fires only when cancelled, i.e. just after the scan already returned."""

    def __init__(self, interval, function):
        self.function = function
        self.daemon = False

    def start(self):
        pass

    def cancel(self):
        self.function()

    def join(self):
        pass


def test_late_scan_interrupt_does_not_leak_into_next_statement(duck, monkeypatch):
    duck.create_partition("features_0_0", PartitionSchema(GEOMETRY_COLUMN, 25833))
    duck.write_row("features_0_0", StoredRow(row_id="pt", geometry=Point(5, 5), bbox=BBox(5, 5, 5, 5)))
    first_cursor = duck._cursor()

    monkeypatch.setattr(duckdb_module.threading, "Timer", _LateTimer)
    hits = duck.scan_intersecting("features_0_0", box(0, 0, 10, 10), timeout_s=5.0)
    assert [r.row_id for r in hits] == ["pt"]
    monkeypatch.undo()

    assert duck._cursor() is not first_cursor
    assert duck.row_ids("features_0_0") == ["pt"]
    assert [r.row_id for r in duck.scan_intersecting("features_0_0", box(0, 0, 10, 10))] == ["pt"]
