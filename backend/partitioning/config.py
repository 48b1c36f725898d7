from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pyproj import CRS
from pyproj.exceptions import CRSError


DEFAULT_MAX_CANDIDATE_TILES = 10_000
GEOMETRY_COLUMN = "geom"


def _default_scan_workers() -> int:
    return max(1, int(os.cpu_count() or 1))


class GridConfig(BaseModel):
    """
    Tile grid settings.

    `tile_size` and `srid` have no defaults on purpose: both must match the stored
    geometries, so they always come from explicit configuration.
    """

    tile_size: float = Field(gt=0.0)
    srid: int
    table: str = Field(default="features", pattern=r"^[a-z][a-z0-9_]*$", max_length=39)
    max_candidate_tiles: int = Field(default=DEFAULT_MAX_CANDIDATE_TILES, ge=1)
    scan_workers: int = Field(default_factory=_default_scan_workers, ge=1)
    scan_timeout_s: float | None = Field(default=None, gt=0.0)

    @field_validator("srid")
    @classmethod
    def _projected_crs(cls, v: int) -> int:
        _check_projected_crs(int(v))
        return int(v)


@lru_cache(maxsize=32)
def _check_projected_crs(srid: int) -> None:
    try:
        crs = CRS.from_epsg(srid)
    except CRSError as exc:
        raise ValueError(f"Unknown reference system EPSG:{srid}") from exc
    # Floor division on degrees does not give square tiles.
    if crs.is_geographic:
        raise ValueError(f"EPSG:{srid} is geographic; the tile grid needs a projected CRS")


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid grid config yaml root: {path}")
    return data


def load_grid_config(path: str | Path) -> GridConfig:
    p = Path(path)
    data = _load_yaml(p)
    # Allow the settings to sit under a top-level `grid:` key.
    if isinstance(data.get("grid"), dict):
        data = data["grid"]
    return GridConfig.model_validate(data)


_ENV_FIELDS = {
    "TILEGRID_TILE_SIZE": "tile_size",
    "TILEGRID_SRID": "srid",
    "TILEGRID_TABLE": "table",
    "TILEGRID_MAX_CANDIDATE_TILES": "max_candidate_tiles",
    "TILEGRID_SCAN_WORKERS": "scan_workers",
    "TILEGRID_SCAN_TIMEOUT_S": "scan_timeout_s",
}


def grid_config_from_env() -> GridConfig:
    """
    Build the grid config from `TILEGRID_*` env vars.

    If `TILEGRID_CONFIG` points at a YAML file it is loaded first and env vars
    override individual fields.
    """
    data: dict[str, Any] = {}
    cfg_path = (os.getenv("TILEGRID_CONFIG") or "").strip()
    if cfg_path:
        data.update(load_grid_config(cfg_path).model_dump())

    for env_name, field_name in _ENV_FIELDS.items():
        raw = (os.getenv(env_name) or "").strip()
        if raw:
            data[field_name] = raw

    missing = [f for f in ("tile_size", "srid") if f not in data]
    if missing:
        raise ValueError(
            "Grid config is missing "
            + ", ".join(missing)
            + " (set TILEGRID_TILE_SIZE / TILEGRID_SRID or TILEGRID_CONFIG)"
        )
    return GridConfig.model_validate(data)
