# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Geometry Module
Public API for polygon validation, bounding boxes and coordinate transforms.
"""

from app.modules.geometry.bounding_box import compute_bounding_box
from app.modules.geometry.coordinate_transform import (
    absolute_to_relative,
    anchor_from_bbox,
    polygon_centroid,
    rebase_polygon,
    relative_to_absolute,
    restore_polygon,
)
from app.modules.geometry.polygon_validator import (
    has_self_intersections,
    validate_polygon,
    validate_structure,
)

__all__ = [
    # Validator
    "validate_structure",
    "has_self_intersections",
    "validate_polygon",
    # Bounding box
    "compute_bounding_box",
    # Transforms
    "relative_to_absolute",
    "absolute_to_relative",
    "rebase_polygon",
    "restore_polygon",
    "anchor_from_bbox",
    "polygon_centroid",
]
