# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Polygon Validator
Checks a user-drawn polygon before it becomes a piece:
  1. Structure: at least 3 vertices
  2. Range: every vertex inside the relative [0, 1] frame
  3. Simplicity: no two non-adjacent edges cross (CCW segment test)

Invalid polygons are rejected with GeometryError, never repaired.
"""

from __future__ import annotations

from typing import Sequence

from app.api.middleware.error_handler import GeometryError
from app.models.puzzle import Point
from app.utils.logger import get_logger

log = get_logger(__name__)

_MIN_VERTICES = 3


def validate_structure(polygon: Sequence[Point]) -> bool:
    return len(polygon) >= _MIN_VERTICES


def _ccw(p: Point, q: Point, r: Point) -> bool:
    return (r.y - p.y) * (q.x - p.x) > (q.y - p.y) * (r.x - p.x)


def segments_intersect(a: Point, b: Point, c: Point, d: Point) -> bool:
    """
    True if segment AB crosses segment CD.
    A and B must lie on opposite sides of CD, and C and D on opposite
    sides of AB. Collinear touching is not reported.
    """
    return (
        _ccw(a, c, d) != _ccw(b, c, d)
        and _ccw(a, b, c) != _ccw(a, b, d)
    )


def has_self_intersections(polygon: Sequence[Point]) -> bool:
    """
    Test every edge against every non-adjacent edge of the closed loop.

    Edge i runs from P[i] to P[i+1 mod n]. Edges j ≥ i+2 are checked,
    except the closing edge (n-1) against edge 0 since they share P[0].
    Triangles cannot self-intersect.
    """
    n = len(polygon)
    if n < 4:
        return False

    for i in range(n):
        p1 = polygon[i]
        p2 = polygon[(i + 1) % n]
        for j in range(i + 2, n):
            if i == 0 and j == n - 1:
                continue
            p3 = polygon[j]
            p4 = polygon[(j + 1) % n]
            if segments_intersect(p1, p2, p3, p4):
                return True
    return False


def validate_relative_bounds(polygon: Sequence[Point]) -> None:
    """Raise GeometryError if any vertex lies outside [0, 1]."""
    for idx, p in enumerate(polygon):
        if not (0.0 <= p.x <= 1.0 and 0.0 <= p.y <= 1.0):
            raise GeometryError(
                f"Vertex {idx} ({p.x}, {p.y}) lies outside the relative [0, 1] frame."
            )


def validate_polygon(polygon: Sequence[Point]) -> None:
    """
    Full finalization check. Raises GeometryError on the first failure.
    """
    if not validate_structure(polygon):
        raise GeometryError(
            f"A polygon needs at least {_MIN_VERTICES} points; got {len(polygon)}."
        )
    validate_relative_bounds(polygon)
    if has_self_intersections(polygon):
        raise GeometryError("The polygon has self-intersecting edges.")

    log.debug("polygon_validated", vertices=len(polygon))
