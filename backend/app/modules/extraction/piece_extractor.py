# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Piece Raster Extractor
Cuts one piece out of the decoded source image.

For a polygon relative to the source:
  1. Compute the padded, clamped bounding box
  2. Allocate a transparent surface of exactly bbox.width × bbox.height
  3. Shift the absolute polygon by (-bbox.min_x, -bbox.min_y)
  4. Clip the surface to the shifted polygon
  5. Copy the bbox sub-rectangle of the source through the clip
  6. Encode losslessly (PNG keeps the cut-out transparent)
  7. Re-base the polygon into the raster's own relative frame

The source array is only read, so many extractions can share it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from app.models.puzzle import BoundingBox, Point
from app.modules.extraction.raster_surface import SurfaceFactory, new_surface
from app.modules.geometry.bounding_box import compute_bounding_box
from app.modules.geometry.coordinate_transform import (
    polygon_to_absolute,
    polygon_to_relative,
    shift_to_bbox,
)
from app.modules.geometry.polygon_validator import validate_polygon
from app.utils.logger import get_logger

log = get_logger(__name__)

PIECE_FORMAT = "png"
PIECE_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class ExtractedPiece:
    """Output of extract_piece: the encoded raster and its local polygon."""
    image_bytes: bytes
    cropped_polygon: list[Point]   # relative to the raster (bbox) frame
    bbox: BoundingBox              # pre-crop box in source pixels


def extract_piece(
    source: np.ndarray,
    polygon: Sequence[Point],
    source_width: int,
    source_height: int,
    padding: Optional[int] = None,
    surface_factory: SurfaceFactory = new_surface,
) -> ExtractedPiece:
    """
    Clip, crop and rasterize a single piece.

    Args:
        source:          Decoded BGRA source image (H×W×4), treated read-only
        polygon:         Piece polygon relative to the source image
        source_width:    Source width in pixels
        source_height:   Source height in pixels
        padding:         Bounding box padding (defaults to BBOX_PADDING_PX)
        surface_factory: Creates the drawing surface

    Returns:
        ExtractedPiece with PNG bytes sized bbox.width × bbox.height.

    Raises:
        GeometryError: polygon is not a valid piece outline
        SurfaceError:  surface could not be created or encoded
    """
    validate_polygon(polygon)

    bbox = compute_bounding_box(polygon, source_width, source_height, padding)
    surface = surface_factory(bbox.width, bbox.height)

    local = shift_to_bbox(
        polygon_to_absolute(polygon, source_width, source_height), bbox
    )

    surface.clip_to_polygon(local)
    surface.draw_sub_image(source, bbox, (0, 0))
    image_bytes = surface.encode(PIECE_FORMAT)

    cropped = polygon_to_relative(local, bbox.width, bbox.height)

    log.debug(
        "piece_extracted",
        vertices=len(polygon),
        bbox=(bbox.min_x, bbox.min_y, bbox.width, bbox.height),
        size_bytes=len(image_bytes),
    )
    return ExtractedPiece(image_bytes=image_bytes, cropped_polygon=cropped, bbox=bbox)
