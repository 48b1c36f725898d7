from __future__ import annotations

from typing import Any

from shapely import wkb, wkt
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from geo.bbox import BBox
from partitioning.errors import InvalidGeometry


def to_shape(geometry: Any) -> BaseGeometry | None:
    """
    Decode a geometry payload into a shapely geometry.

    Accepted: shapely geometries, WKB bytes, WKT text. `None` stays `None`
    (a null geometry is a valid row, it just has no tile).
    """
    if geometry is None:
        return None
    if isinstance(geometry, BaseGeometry):
        return geometry
    try:
        if isinstance(geometry, (bytes, bytearray, memoryview)):
            return wkb.loads(bytes(geometry))
        if isinstance(geometry, str):
            return wkt.loads(geometry)
    except (ShapelyError, ValueError, TypeError) as exc:
        raise InvalidGeometry(f"Unparseable geometry: {exc}") from exc
    raise InvalidGeometry(f"Unsupported geometry payload type: {type(geometry).__name__}")


def geometry_bbox(geom: BaseGeometry | None) -> BBox:
    if geom is None:
        raise InvalidGeometry("Geometry is null")
    if geom.is_empty:
        raise InvalidGeometry("Geometry is empty")
    bbox = BBox.from_bounds(geom.bounds)
    if not bbox.is_finite():
        raise InvalidGeometry(f"Geometry bbox is not finite: {bbox.as_tuple()!r}")
    return bbox


def to_wkb(geom: BaseGeometry | None) -> bytes | None:
    if geom is None:
        return None
    return wkb.dumps(geom)


def intersects(a: BaseGeometry | None, b: BaseGeometry) -> bool:
    if a is None or a.is_empty:
        return False
    return bool(a.intersects(b))
