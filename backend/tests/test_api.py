from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from main import app
from partitioning.singleton import get_engine, reset_engine, set_engine


@pytest.fixture
def client(engine):
    set_engine(engine)
    try:
        yield TestClient(app)
    finally:
        set_engine(None)


def test_ingest_route_and_query(client, grid_config):
    srid = grid_config.srid
    resp = client.post(
        "/ingest",
        json={
            "rows": [
                {
                    "rowId": "A",
                    "wkt": "POLYGON ((49990 112030, 50010 112030, 50010 112050, 49990 112050, 49990 112030))",
                    "srid": srid,
                },
                {"rowId": "B", "wkt": "POINT (75000 125000)", "srid": srid},
                {"rowId": "N", "wkt": None, "srid": srid},
            ]
        },
    )
    assert resp.status_code == 200
    committed = resp.json()["committed"]
    assert [(c["rowId"], c["tileKey"]) for c in committed] == [
        ("A", "0_2"),
        ("B", "1_2"),
        ("N", "default"),
    ]
    assert committed[2]["fallbackReason"]

    resp = client.post(
        "/route",
        json={"bbox": {"xmin": 49995, "ymin": 112035, "xmax": 50005, "ymax": 112045}},
    )
    assert resp.status_code == 200
    assert resp.json() == {"tileKeys": ["0_2", "1_2", "default"]}

    resp = client.post(
        "/query",
        json={"wkt": "POLYGON ((49995 112035, 50005 112035, 50005 112045, 49995 112045, 49995 112035))"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"rows": [{"rowId": "A", "partition": "features_0_2"}]}


def test_partitions_admin(client):
    resp = client.put("/partitions/n3_2")
    assert resp.status_code == 200
    assert resp.json()["physicalName"] == "features_n3_2"
    assert resp.json()["indexed"] is True

    resp = client.get("/partitions")
    assert [p["tileKey"] for p in resp.json()] == ["default", "n3_2"]

    assert client.put("/partitions/not-a-key").status_code == 422


def test_errors_map_to_status_codes(client, grid_config):
    resp = client.post(
        "/route",
        json={"bbox": {"xmin": 0, "ymin": 0, "xmax": 7_499_999, "ymax": 4_999_999}},
    )
    assert resp.status_code == 422
    assert resp.json()["error"] == "QueryTooBroad"

    resp = client.post("/ingest", json={"rows": [{"rowId": "x", "wkt": "POINT (1 1)", "srid": 3857}]})
    assert resp.status_code == 409
    assert resp.json()["error"] == "ReferenceSystemMismatch"

    resp = client.post("/query", json={"wkt": "POINT EMPTY"})
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidGeometry"


def test_engine_from_env(monkeypatch):
    reset_engine()
    monkeypatch.setenv("TILEGRID_TILE_SIZE", "1000")
    monkeypatch.setenv("TILEGRID_SRID", "3857")
    monkeypatch.setenv("TILEGRID_STORE", "duckdb")
    monkeypatch.delenv("TILEGRID_DUCKDB_PATH", raising=False)
    monkeypatch.delenv("TILEGRID_CONFIG", raising=False)
    try:
        engine = get_engine()
        assert engine.config.tile_size == 1000.0
        assert get_engine() is engine
        assert [r.tile_key for r in engine.list_all()] == ["default"]
    finally:
        reset_engine()
