# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Raster Surface
A small drawing-surface capability used by the piece extractor:

    new_surface(w, h)                          transparent BGRA surface
    surface.clip_to_polygon(points)            restrict drawing to a closed path
    surface.draw_sub_image(src, rect, origin)  copy a source rectangle through the clip
    surface.encode(fmt)                        serialise to PNG / WebP bytes

OpenCVRasterSurface implements it with numpy + cv2.fillPoly. Path
coordinates follow the canvas convention: pixel (i, j) spans [i, i+1),
so integer coordinates lie on pixel edges, not centres.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Sequence

import cv2
import numpy as np

from app.api.middleware.error_handler import SurfaceError
from app.models.puzzle import AbsolutePoint, BoundingBox
from app.utils.image_utils import bgra_to_png_bytes, bgra_to_webp_bytes

# Fractional bits for sub-pixel polygon vertices in cv2.fillPoly
_SUBPIXEL_SHIFT = 4
_SUBPIXEL_SCALE = 1 << _SUBPIXEL_SHIFT

# Largest surface side accepted; larger requests fail like an oversized canvas
_MAX_SURFACE_SIDE = 32_767


class RasterSurface(ABC):
    """Abstract drawing surface. All coordinates are surface-local pixels."""

    @property
    @abstractmethod
    def width(self) -> int:
        ...

    @property
    @abstractmethod
    def height(self) -> int:
        ...

    @abstractmethod
    def clip_to_polygon(self, points: Sequence[AbsolutePoint]) -> None:
        """Intersect the current clip with the closed polygon through points."""

    @abstractmethod
    def draw_sub_image(
        self,
        src: np.ndarray,
        src_rect: BoundingBox,
        dst_origin: tuple[int, int] = (0, 0),
    ) -> None:
        """Composite src[src_rect] at dst_origin, masked by the clip."""

    @abstractmethod
    def encode(self, fmt: str = "png") -> bytes:
        """Serialise the surface. Raises SurfaceError on failure."""


class OpenCVRasterSurface(RasterSurface):
    """BGRA numpy surface with an 8-bit anti-aliased coverage clip."""

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise SurfaceError(f"Cannot create a {width}×{height} raster surface.")
        if width > _MAX_SURFACE_SIDE or height > _MAX_SURFACE_SIDE:
            raise SurfaceError(
                f"Raster surface {width}×{height} exceeds the "
                f"{_MAX_SURFACE_SIDE}px side limit."
            )
        try:
            self._pixels = np.zeros((height, width, 4), dtype=np.uint8)
        except MemoryError as exc:
            raise SurfaceError(f"Out of memory allocating {width}×{height} surface.") from exc
        self._clip = np.full((height, width), 255, dtype=np.uint8)

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def pixels(self) -> np.ndarray:
        """Read-only view of the BGRA pixel buffer."""
        view = self._pixels.view()
        view.flags.writeable = False
        return view

    def clip_to_polygon(self, points: Sequence[AbsolutePoint]) -> None:
        mask = np.zeros((self.height, self.width), dtype=np.uint8)
        if len(points) >= 3:
            # -0.5 moves canvas edge coordinates onto OpenCV pixel centres
            pts = np.array(
                [[(p.x - 0.5) * _SUBPIXEL_SCALE, (p.y - 0.5) * _SUBPIXEL_SCALE]
                 for p in points],
                dtype=np.float64,
            )
            pts = np.round(pts).astype(np.int32)
            cv2.fillPoly(
                mask, [pts], 255,
                lineType=cv2.LINE_AA,
                shift=_SUBPIXEL_SHIFT,
            )
        self._clip = np.minimum(self._clip, mask)

    def draw_sub_image(
        self,
        src: np.ndarray,
        src_rect: BoundingBox,
        dst_origin: tuple[int, int] = (0, 0),
    ) -> None:
        if src.ndim != 3 or src.shape[2] != 4:
            raise SurfaceError(f"Source must be a BGRA image; got shape {src.shape}.")

        sh, sw = src.shape[:2]
        dx, dy = dst_origin

        # Intersect the requested rectangle with the source and the surface
        x1 = max(0, src_rect.min_x)
        y1 = max(0, src_rect.min_y)
        x2 = min(sw, src_rect.max_x, src_rect.min_x + self.width - dx)
        y2 = min(sh, src_rect.max_y, src_rect.min_y + self.height - dy)
        if x2 <= x1 or y2 <= y1:
            return

        ox = dx + (x1 - src_rect.min_x)
        oy = dy + (y1 - src_rect.min_y)
        w, h = x2 - x1, y2 - y1

        patch = src[y1:y2, x1:x2].astype(np.float32)
        coverage = self._clip[oy:oy + h, ox:ox + w].astype(np.float32) / 255.0
        dst = self._pixels[oy:oy + h, ox:ox + w].astype(np.float32)

        # Source-over compositing with the clip as extra coverage
        sa = (patch[:, :, 3] / 255.0) * coverage
        da = dst[:, :, 3] / 255.0
        out_a = sa + da * (1.0 - sa)
        safe_a = np.where(out_a > 0, out_a, 1.0)

        out = np.empty_like(dst)
        for c in range(3):
            out[:, :, c] = (
                patch[:, :, c] * sa + dst[:, :, c] * da * (1.0 - sa)
            ) / safe_a
        out[:, :, 3] = out_a * 255.0

        self._pixels[oy:oy + h, ox:ox + w] = np.clip(np.round(out), 0, 255).astype(np.uint8)

    def encode(self, fmt: str = "png") -> bytes:
        fmt = fmt.lower()
        if fmt == "png":
            return bgra_to_png_bytes(self._pixels)
        if fmt == "webp":
            return bgra_to_webp_bytes(self._pixels)
        raise SurfaceError(f"Unsupported surface encoding '{fmt}'.")


SurfaceFactory = Callable[[int, int], RasterSurface]


def new_surface(width: int, height: int) -> RasterSurface:
    """Default surface factory."""
    return OpenCVRasterSurface(width, height)
