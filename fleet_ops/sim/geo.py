from __future__ import annotations

"""
File: fleet_ops/sim/geo.py
Purpose: Distance and interpolation helpers over (lon, lat) pairs.
Key responsibilities:
- Equirectangular segment lengths in meters.
- Arc-length lookup of a point along a polyline.
- Joining two route legs into one polyline.
"""

from math import hypot
from typing import Sequence

Coord = tuple[float, float]

METERS_PER_DEG_LON = 111320.0
METERS_PER_DEG_LAT = 110540.0


def distance_m(a: Sequence[float], b: Sequence[float]) -> float:
    """Approximate distance in meters between two (lon, lat) points."""
    dx = (a[0] - b[0]) * METERS_PER_DEG_LON
    dy = (a[1] - b[1]) * METERS_PER_DEG_LAT
    return hypot(dx, dy)


def planar_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Raw distance in degrees, good enough for ordering nearby points."""
    return hypot(a[0] - b[0], a[1] - b[1])


def polyline_length_m(poly: Sequence[Sequence[float]]) -> float:
    """Sum of segment lengths of a polyline in meters."""
    return sum(distance_m(poly[i], poly[i + 1]) for i in range(len(poly) - 1))


def point_at_offset(poly: Sequence[Sequence[float]], offset_m: float) -> Coord:
    """Return the coordinate located offset_m meters along the polyline.

    The walk always starts at the first point, so the result depends only on
    the offset and never on where a previous lookup ended. Offsets past the
    end return the last point.
    """
    if not poly:
        raise ValueError("empty polyline")
    acc = 0.0
    for idx in range(len(poly) - 1):
        start, end = poly[idx], poly[idx + 1]
        seg = distance_m(start, end)
        if acc + seg >= offset_m:
            if seg <= 0:
                return (float(start[0]), float(start[1]))
            t = max(0.0, (offset_m - acc) / seg)
            return (
                start[0] + (end[0] - start[0]) * t,
                start[1] + (end[1] - start[1]) * t,
            )
        acc += seg
    last = poly[-1]
    return (float(last[0]), float(last[1]))


def join_legs(first: Sequence[Sequence[float]], second: Sequence[Sequence[float]]) -> list[Coord]:
    """Concatenate two legs, dropping the second leg's start point.

    Both legs meet at the pickup location, so the second leg's first point
    duplicates the first leg's last one.
    """
    joined = [(float(p[0]), float(p[1])) for p in first]
    tail = [(float(p[0]), float(p[1])) for p in second]
    if not joined:
        return tail
    return joined + tail[1:]
