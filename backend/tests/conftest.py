import sys
from pathlib import Path

import pytest


# Ensure `backend/` is on sys.path so tests can import local modules
# like `geo.*`, `partitioning.*`, `store.*` and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from partitioning.config import GridConfig  # noqa: E402
from partitioning.engine import GridEngine  # noqa: E402
from store.in_memory import InMemoryStore  # noqa: E402

# EPSG:25833 (ETRS89 / UTM 33N): projected, metre units.
SRID = 25833
TILE = 50_000.0


@pytest.fixture
def grid_config() -> GridConfig:
    return GridConfig(tile_size=TILE, srid=SRID, scan_workers=4)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def engine(grid_config, store):
    e = GridEngine.open(grid_config, store)
    yield e
    e.close()
