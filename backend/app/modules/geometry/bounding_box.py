# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Bounding Box Calculator
Padded, clamped bounding box of a relative polygon in pixel space.

The padded extrema are snapped outward to whole pixels before clamping,
so the box always maps onto an integer-sized raster surface.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from app.config import get_settings
from app.models.puzzle import BoundingBox, Point
from app.modules.geometry.coordinate_transform import polygon_to_absolute
from app.utils.logger import get_logger

log = get_logger(__name__)

# Decimal places kept before snapping, so float noise such as
# 0.3 * 800 = 240.00000000000003 does not grow the box by a pixel
_SNAP_DECIMALS = 6


def compute_bounding_box(
    polygon: Sequence[Point],
    frame_width: int,
    frame_height: int,
    padding: Optional[int] = None,
) -> BoundingBox:
    """
    Compute the bounding box of a polygon against a frame.

    Args:
        polygon:      Relative points (0–1) against the frame
        frame_width:  Frame width in pixels
        frame_height: Frame height in pixels
        padding:      Pixels added on every side (defaults to BBOX_PADDING_PX)

    Returns:
        BoundingBox fully contained in [0, frame_width] × [0, frame_height].
        An empty polygon yields the full frame.
    """
    if padding is None:
        padding = get_settings().bbox_padding_px

    if not polygon:
        log.warning("bbox_empty_polygon", frame=(frame_width, frame_height))
        return BoundingBox(min_x=0, min_y=0, width=frame_width, height=frame_height)

    absolute = polygon_to_absolute(polygon, frame_width, frame_height)
    xs = [p.x for p in absolute]
    ys = [p.y for p in absolute]

    min_x = max(0, math.floor(round(min(xs) - padding, _SNAP_DECIMALS)))
    min_y = max(0, math.floor(round(min(ys) - padding, _SNAP_DECIMALS)))
    max_x = min(frame_width, math.ceil(round(max(xs) + padding, _SNAP_DECIMALS)))
    max_y = min(frame_height, math.ceil(round(max(ys) + padding, _SNAP_DECIMALS)))

    return BoundingBox(
        min_x=min_x,
        min_y=min_y,
        width=max(0, max_x - min_x),
        height=max(0, max_y - min_y),
    )
