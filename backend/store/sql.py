from __future__ import annotations

# Partition bookkeeping lives next to the partitions so a restarted process can
# rebuild its catalog (including which partitions finished indexing).
CREATE_META_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS tilegrid_partitions (
  name TEXT PRIMARY KEY,
  geometry_column TEXT NOT NULL,
  srid INTEGER NOT NULL,
  indexed BOOLEAN NOT NULL DEFAULT FALSE
);
"""

INSERT_META_SQL = """
INSERT OR IGNORE INTO tilegrid_partitions (name, geometry_column, srid, indexed)
VALUES (?, ?, ?, FALSE)
"""

MARK_INDEXED_SQL = """
UPDATE tilegrid_partitions SET indexed = TRUE WHERE name = ?
"""

SELECT_META_SQL = """
SELECT name, geometry_column, indexed
  FROM tilegrid_partitions
 WHERE starts_with(name, ?)
 ORDER BY name
"""

GEOMETRY_COLUMN_SQL = """
SELECT geometry_column FROM tilegrid_partitions WHERE name = ?
"""

CREATE_PARTITION_TEMPLATE = """
CREATE TABLE IF NOT EXISTS {name} (
  row_id TEXT PRIMARY KEY,
  {geom} BLOB,
  xmin DOUBLE,
  ymin DOUBLE,
  xmax DOUBLE,
  ymax DOUBLE,
  props_json TEXT
);
"""

CREATE_BBOX_INDEX_TEMPLATE = """
CREATE INDEX IF NOT EXISTS {name}_bbox_idx ON {name} (xmin, ymin, xmax, ymax);
"""

INSERT_ROW_TEMPLATE = """
INSERT INTO {name} (row_id, {geom}, xmin, ymin, xmax, ymax, props_json)
VALUES (?, ?, ?, ?, ?, ?, ?)
"""

# Rows without a bbox (default partition) skip the prefilter and go straight to the
# exact test.
SCAN_CANDIDATES_TEMPLATE = """
SELECT row_id, {geom}
  FROM {name}
 WHERE {geom} IS NOT NULL
   AND (xmin IS NULL
        OR (xmin <= ? AND xmax >= ? AND ymin <= ? AND ymax >= ?))
"""

EXTENT_TEMPLATE = """
SELECT min(xmin), min(ymin), max(xmax), max(ymax)
  FROM {name}
 WHERE xmin IS NOT NULL
"""

SELECT_ROW_IDS_TEMPLATE = """
SELECT row_id FROM {name} ORDER BY row_id
"""
