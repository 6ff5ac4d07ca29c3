# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Coordinate Transforms
Pure, stateless conversions between the relative (0–1) and absolute
(pixel) spaces, plus the re-basing of a piece polygon into its cropped
raster's own frame and the inverse restore used by regeneration.
"""

from __future__ import annotations

from typing import Sequence

from app.api.middleware.error_handler import GeometryError
from app.models.puzzle import AbsolutePoint, BoundingBox, Point


def _unit(v: float) -> float:
    # Absorbs float noise at the frame edges (e.g. 1.0000000000000002)
    return min(1.0, max(0.0, v))


def _check_frame(width: float, height: float) -> None:
    if width <= 0 or height <= 0:
        raise GeometryError(f"Reference frame must be non-empty; got {width}×{height}.")


# ─── Point Conversions ───────────────────────────────────────────────────────

def relative_to_absolute(point: Point, width: float, height: float) -> AbsolutePoint:
    return AbsolutePoint(x=point.x * width, y=point.y * height)


def absolute_to_relative(point: AbsolutePoint, width: float, height: float) -> Point:
    _check_frame(width, height)
    return Point(x=_unit(point.x / width), y=_unit(point.y / height))


def polygon_to_absolute(
    polygon: Sequence[Point], width: float, height: float
) -> list[AbsolutePoint]:
    return [relative_to_absolute(p, width, height) for p in polygon]


def polygon_to_relative(
    polygon: Sequence[AbsolutePoint], width: float, height: float
) -> list[Point]:
    return [absolute_to_relative(p, width, height) for p in polygon]


# ─── Re-basing ───────────────────────────────────────────────────────────────

def shift_to_bbox(
    polygon: Sequence[AbsolutePoint], bbox: BoundingBox
) -> list[AbsolutePoint]:
    """Translate absolute source points into the bbox's local frame."""
    return [AbsolutePoint(x=p.x - bbox.min_x, y=p.y - bbox.min_y) for p in polygon]


def rebase_polygon(
    polygon: Sequence[Point],
    source_width: int,
    source_height: int,
    bbox: BoundingBox,
) -> list[Point]:
    """
    Re-express a source-relative polygon relative to the cropped raster
    covering bbox: (p.x*W - bbox.min_x) / bbox.width, same for y.
    """
    absolute = polygon_to_absolute(polygon, source_width, source_height)
    local = shift_to_bbox(absolute, bbox)
    return polygon_to_relative(local, bbox.width, bbox.height)


def restore_polygon(
    cropped: Sequence[Point],
    raster_width: int,
    raster_height: int,
    anchor_x: float,
    anchor_y: float,
    source_width: int,
    source_height: int,
) -> list[Point]:
    """
    Inverse of rebase_polygon for a materialized piece.

    The raster's pixel size is the bbox size and the anchor is the bbox
    origin relative to the source, so the source-relative polygon is
    recovered from data the stored definition already carries.
    """
    _check_frame(source_width, source_height)
    min_x = round(anchor_x * source_width)
    min_y = round(anchor_y * source_height)
    return [
        Point(
            x=_unit((p.x * raster_width + min_x) / source_width),
            y=_unit((p.y * raster_height + min_y) / source_height),
        )
        for p in cropped
    ]


# ─── Anchors ─────────────────────────────────────────────────────────────────

def anchor_from_bbox(
    bbox: BoundingBox, source_width: int, source_height: int
) -> tuple[float, float]:
    """
    original_x / original_y for a piece, always against the original,
    uncropped image dimensions.
    """
    _check_frame(source_width, source_height)
    return _unit(bbox.min_x / source_width), _unit(bbox.min_y / source_height)


def polygon_centroid(polygon: Sequence[Point]) -> Point:
    """Vertex mean. Used as the provisional anchor of a freshly drawn piece."""
    if not polygon:
        raise GeometryError("Cannot compute the centroid of an empty polygon.")
    n = len(polygon)
    return Point(
        x=_unit(sum(p.x for p in polygon) / n),
        y=_unit(sum(p.y for p in polygon) / n),
    )
