# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Image I/O and Conversion Utilities
All internal processing uses BGRA uint8 numpy arrays (OpenCV channel
order plus alpha). Decoding goes through Pillow so EXIF orientation is
honoured the same way a browser applies it when loading an image.
"""

from __future__ import annotations

import io

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from app.api.middleware.error_handler import DecodeError, SurfaceError


# ─── Decode ──────────────────────────────────────────────────────────────────

def bytes_to_bgra(data: bytes) -> np.ndarray:
    """
    Decode raw image bytes to a BGRA uint8 array (H×W×4).
    Raises DecodeError if the bytes are empty or not a supported image.
    """
    if not data:
        raise DecodeError("Image data is empty.")
    try:
        with Image.open(io.BytesIO(data)) as pil_img:
            pil_img = ImageOps.exif_transpose(pil_img)
            rgba = np.array(pil_img.convert("RGBA"))
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise DecodeError(f"Could not decode image bytes: {exc}") from exc
    return cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGRA)


def probe_image_size(data: bytes) -> tuple[int, int]:
    """
    Return (width, height) from the image header without decoding pixels.
    Raises DecodeError if the bytes are not a readable image.
    """
    if not data:
        raise DecodeError("Image data is empty.")
    try:
        with Image.open(io.BytesIO(data)) as pil_img:
            return pil_img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise DecodeError(f"Could not read image header: {exc}") from exc


def image_size(img: np.ndarray) -> tuple[int, int]:
    """(width, height) of an image array."""
    h, w = img.shape[:2]
    return int(w), int(h)


# ─── Encode ──────────────────────────────────────────────────────────────────

def bgra_to_png_bytes(img: np.ndarray) -> bytes:
    """Encode a BGRA array to PNG bytes (lossless, alpha preserved)."""
    success, buf = cv2.imencode(".png", img)
    if not success:
        raise SurfaceError("Failed to encode image to PNG bytes.")
    return buf.tobytes()


def bgra_to_webp_bytes(img: np.ndarray, quality: int = 85) -> bytes:
    """Encode a BGRA array to lossy WebP bytes."""
    success, buf = cv2.imencode(".webp", img, [cv2.IMWRITE_WEBP_QUALITY, quality])
    if not success:
        raise SurfaceError("Failed to encode image to WebP bytes.")
    return buf.tobytes()


# ─── Resize ──────────────────────────────────────────────────────────────────

def resize_long_edge(img: np.ndarray, max_long_edge: int) -> tuple[np.ndarray, float]:
    """
    Resize image so its longest edge equals max_long_edge.
    Preserves aspect ratio. Returns (resized_image, scale_factor).
    Scale factor < 1.0 means the image was downscaled.
    """
    h, w = img.shape[:2]
    long_edge = max(h, w)
    if long_edge <= max_long_edge:
        return img.copy(), 1.0
    scale = max_long_edge / long_edge
    new_w = int(round(w * scale))
    new_h = int(round(h * scale))
    resized = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)
    return resized, scale
