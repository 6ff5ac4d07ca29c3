# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Extraction Module
Public API for per-piece raster extraction.
"""

from app.modules.extraction.piece_extractor import (
    PIECE_CONTENT_TYPE,
    ExtractedPiece,
    extract_piece,
)
from app.modules.extraction.raster_surface import (
    OpenCVRasterSurface,
    RasterSurface,
    new_surface,
)

__all__ = [
    "ExtractedPiece",
    "extract_piece",
    "PIECE_CONTENT_TYPE",
    "RasterSurface",
    "OpenCVRasterSurface",
    "new_surface",
]
