from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class BBox:
    """
    Axis-aligned bounding box in the grid's projected units.

    Convention used throughout this repo:
    - xmin, ymin, xmax, ymax (same order as shapely `.bounds`)
    """

    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @classmethod
    def from_bounds(cls, bounds: Sequence[float]) -> "BBox":
        xmin, ymin, xmax, ymax = (float(v) for v in bounds)
        return cls(xmin=xmin, ymin=ymin, xmax=xmax, ymax=ymax)

    def normalized(self) -> "BBox":
        return BBox(
            xmin=min(self.xmin, self.xmax),
            ymin=min(self.ymin, self.ymax),
            xmax=max(self.xmin, self.xmax),
            ymax=max(self.ymin, self.ymax),
        )

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in self.as_tuple())

    def intersects(self, other: "BBox") -> bool:
        # Closed intervals: touching edges count, matching ST_Intersects.
        return (
            self.xmin <= other.xmax
            and other.xmin <= self.xmax
            and self.ymin <= other.ymax
            and other.ymin <= self.ymax
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.xmin, self.ymin, self.xmax, self.ymax)
