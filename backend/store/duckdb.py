from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path

import duckdb
from shapely.geometry.base import BaseGeometry
from shapely.wkb import loads as wkb_loads

from geo.bbox import BBox
from geo.ops import to_wkb
from store.config import duckdb_threads
from store.sql import (
    CREATE_BBOX_INDEX_TEMPLATE,
    CREATE_META_TABLE_SQL,
    CREATE_PARTITION_TEMPLATE,
    EXTENT_TEMPLATE,
    GEOMETRY_COLUMN_SQL,
    INSERT_META_SQL,
    INSERT_ROW_TEMPLATE,
    MARK_INDEXED_SQL,
    SCAN_CANDIDATES_TEMPLATE,
    SELECT_META_SQL,
    SELECT_ROW_IDS_TEMPLATE,
)
from store.types import (
    PartitionInfo,
    PartitionSchema,
    RowRef,
    ScanTimedOut,
    StoredRow,
    StoreError,
)

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[a-z][a-z0-9_]*$")


def _ident(name: str) -> str:
    if not _IDENT_RE.match(name or ""):
        raise StoreError(f"Unsafe identifier: {name!r}")
    return name


def _connect(path: str, *, threads: int) -> duckdb.DuckDBPyConnection:
    if path != ":memory:":
        p = Path(path)
        if p.parent and str(p.parent) not in {".", ""}:
            p.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(database=path, read_only=False, config={"threads": int(threads)})


class DuckDBStore:
    """
    One DuckDB table per partition.

    Geometries are stored as WKB next to their bbox columns; the "spatial index" is
    a DuckDB index over the bbox columns. Scans prefilter by bbox in SQL, then run
    the exact intersection test on the decoded geometry.

    DuckDB connections are not shared across threads: every thread gets its own
    cursor on the same database.
    """

    def __init__(self, path: str = ":memory:", *, threads: int | None = None):
        self.path = path
        self._conn = _connect(path, threads=threads or duckdb_threads())
        self._ddl_lock = threading.RLock()
        self._local = threading.local()
        self._geom_cols: dict[str, str] = {}
        self._conn.execute(CREATE_META_TABLE_SQL)

    def _cursor(self) -> duckdb.DuckDBPyConnection:
        c = getattr(self._local, "cur", None)
        if c is None:
            c = self._conn.cursor()
            self._local.cur = c
        return c

    def _drop_cursor(self, cur: duckdb.DuckDBPyConnection) -> None:
        if getattr(self._local, "cur", None) is cur:
            self._local.cur = None
        try:
            cur.close()
        except duckdb.Error as exc:
            logger.debug("Closing interrupted cursor failed: %s", exc)

    def close(self) -> None:
        self._conn.close()

    def _geometry_column(self, name: str) -> str:
        col = self._geom_cols.get(name)
        if col is not None:
            return col
        try:
            row = self._cursor().execute(GEOMETRY_COLUMN_SQL, [name]).fetchone()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc
        if row is None:
            raise StoreError(f"No such partition: {name}")
        col = _ident(str(row[0]))
        self._geom_cols[name] = col
        return col

    def create_partition(self, physical_name: str, schema: PartitionSchema) -> None:
        name = _ident(physical_name)
        geom = _ident(schema.geometry_column)
        with self._ddl_lock:
            try:
                cur = self._cursor()
                cur.execute(CREATE_PARTITION_TEMPLATE.format(name=name, geom=geom))
                cur.execute(INSERT_META_SQL, [name, geom, int(schema.srid)])
            except duckdb.Error as exc:
                raise StoreError(str(exc)) from exc

    def create_spatial_index(self, physical_name: str, column: str) -> None:
        name = _ident(physical_name)
        if column != self._geometry_column(name):
            raise StoreError(f"{name} has no geometry column {column!r}")
        with self._ddl_lock:
            try:
                cur = self._cursor()
                cur.execute(CREATE_BBOX_INDEX_TEMPLATE.format(name=name))
                cur.execute(MARK_INDEXED_SQL, [name])
            except duckdb.Error as exc:
                raise StoreError(str(exc)) from exc

    def write_row(self, physical_name: str, row: StoredRow) -> None:
        name = _ident(physical_name)
        geom = self._geometry_column(name)
        b = row.bbox
        params = [
            row.row_id,
            to_wkb(row.geometry),
            b.xmin if b else None,
            b.ymin if b else None,
            b.xmax if b else None,
            b.ymax if b else None,
            json.dumps(row.props or {}, ensure_ascii=False),
        ]
        try:
            self._cursor().execute(INSERT_ROW_TEMPLATE.format(name=name, geom=geom), params)
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc

    def scan_intersecting(
        self,
        physical_name: str,
        geometry: BaseGeometry,
        *,
        timeout_s: float | None = None,
    ) -> list[RowRef]:
        name = _ident(physical_name)
        geom = self._geometry_column(name)
        qxmin, qymin, qxmax, qymax = geometry.bounds
        cur = self._cursor()

        fired = threading.Event()

        def _interrupt() -> None:
            fired.set()
            cur.interrupt()

        timer: threading.Timer | None = None
        if timeout_s is not None:
            timer = threading.Timer(float(timeout_s), _interrupt)
            timer.daemon = True
            timer.start()
        try:
            rows = cur.execute(
                SCAN_CANDIDATES_TEMPLATE.format(name=name, geom=geom),
                [qxmax, qxmin, qymax, qymin],
            ).fetchall()
        except duckdb.InterruptException as exc:
            raise ScanTimedOut(f"Scan of {name} interrupted after {timeout_s}s") from exc
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            if timer is not None:
                timer.cancel()
                timer.join()
            # An interrupt that lands after the query finished would hit the next
            # statement on this cursor; retire the cursor instead.
            if fired.is_set():
                self._drop_cursor(cur)

        hits: list[str] = []
        for row_id, blob in rows:
            if blob is None:
                continue
            if wkb_loads(bytes(blob)).intersects(geometry):
                hits.append(str(row_id))
        return [RowRef(row_id=rid, partition=name) for rid in sorted(hits)]

    def list_partitions(self, prefix: str) -> list[PartitionInfo]:
        try:
            rows = self._cursor().execute(SELECT_META_SQL, [prefix]).fetchall()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc
        return [PartitionInfo(name=str(n), indexed=bool(ix)) for n, _geom, ix in rows]

    def partition_extent(self, physical_name: str) -> BBox | None:
        name = _ident(physical_name)
        try:
            row = self._cursor().execute(EXTENT_TEMPLATE.format(name=name)).fetchone()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc
        if row is None or row[0] is None:
            return None
        return BBox.from_bounds(row)

    def row_ids(self, physical_name: str) -> list[str]:
        name = _ident(physical_name)
        try:
            rows = self._cursor().execute(SELECT_ROW_IDS_TEMPLATE.format(name=name)).fetchall()
        except duckdb.Error as exc:
            raise StoreError(str(exc)) from exc
        return [str(r[0]) for r in rows]
