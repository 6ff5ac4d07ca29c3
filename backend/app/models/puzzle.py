# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Puzzle Data Models
Pydantic models for the puzzle definition exchanged with the editor:
points, pieces and the definition itself. Field names are fixed by the
stored puzzle format and must not be renamed.

Two coordinate spaces flow through these models:
  relative:  floats in [0, 1] against a reference frame
  absolute:  pixels against that frame's width/height
A piece with an empty image_url holds a polygon relative to the full
source image; a materialized piece holds one relative to its own raster.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Point(BaseModel):
    """A relative point; both components in [0, 1]."""
    model_config = ConfigDict(frozen=True)

    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)


class AbsolutePoint(BaseModel):
    """A pixel-space point against some frame. Never serialised to clients."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class BoundingBox(BaseModel):
    """
    Padded, clamped, whole-pixel bounding box in absolute space.
    Always contained in [0, frame_width] × [0, frame_height].
    """
    model_config = ConfigDict(frozen=True)

    min_x: int = Field(..., ge=0)
    min_y: int = Field(..., ge=0)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)

    @property
    def max_x(self) -> int:
        return self.min_x + self.width

    @property
    def max_y(self) -> int:
        return self.min_y + self.height


class Piece(BaseModel):
    """One jigsaw piece as stored in the puzzle definition."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    polygon_points: list[Point] = Field(default_factory=list)
    # Bounding box top-left relative to the full original image
    original_x: float = Field(0.0, ge=0.0, le=1.0)
    original_y: float = Field(0.0, ge=0.0, le=1.0)
    image_url: str = ""

    @property
    def is_materialized(self) -> bool:
        return self.image_url != ""


class PuzzleDefinition(BaseModel):
    """
    Complete puzzle definition.
    image_width / image_height are the dimensions of the original,
    uncropped source image.
    """
    model_config = ConfigDict(frozen=True)

    image_url: str = ""
    image_width: int = Field(0, ge=0)
    image_height: int = Field(0, ge=0)
    pieces: list[Piece] = Field(default_factory=list)

    def to_output(self) -> dict:
        """Serialise to the stored puzzle format (name omitted when unset)."""
        out = self.model_dump()
        for piece in out["pieces"]:
            if piece.get("name") is None:
                piece.pop("name", None)
        return out
