# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Image Source
Turns a URL or raw bytes into an immutable decoded raster plus its
pixel dimensions. URLs owned by the asset gateway are read straight from
it; anything else is fetched over HTTP(S) with httpx.

Also prepares a freshly uploaded source image for storage: downscale to
the configured long edge and re-encode (WebP by default).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

import httpx
import numpy as np

from app.api.middleware.error_handler import DecodeError, StorageError
from app.config import get_settings
from app.core.asset_gateway import AssetGateway
from app.utils.image_utils import (
    bgra_to_png_bytes,
    bgra_to_webp_bytes,
    bytes_to_bgra,
    image_size,
    probe_image_size,
    resize_long_edge,
)
from app.utils.logger import get_logger

log = get_logger(__name__)

ImageInput = Union[bytes, str]


@dataclass(frozen=True)
class DecodedImage:
    """A decoded BGRA raster. pixels is read-only and safe to share."""
    pixels: np.ndarray
    width: int
    height: int


@dataclass(frozen=True)
class PreparedSource:
    """A source image ready for upload, with the raster that matches it."""
    image: DecodedImage
    data: bytes
    extension: str
    content_type: str
    scale: float


def decode_image(data: bytes) -> DecodedImage:
    """Decode bytes into a read-only DecodedImage. Raises DecodeError."""
    pixels = bytes_to_bgra(data)
    pixels.flags.writeable = False
    width, height = image_size(pixels)
    return DecodedImage(pixels=pixels, width=width, height=height)


def prepare_source(data: bytes) -> PreparedSource:
    """
    Decode an uploaded source image and encode the version that will be
    stored. The returned raster is decoded from the stored bytes, so the
    pieces are cut from exactly what later regenerations will fetch.
    """
    settings = get_settings()
    original = bytes_to_bgra(data)
    oh, ow = original.shape[:2]

    if settings.optimize_source_image:
        resized, scale = resize_long_edge(original, settings.source_max_edge_px)
        encoded = bgra_to_webp_bytes(resized, quality=settings.source_webp_quality)
        extension, content_type = "webp", "image/webp"
    else:
        scale = 1.0
        encoded = bgra_to_png_bytes(original)
        extension, content_type = "png", "image/png"

    image = decode_image(encoded)
    log.info(
        "source_prepared",
        original_size=(ow, oh),
        stored_size=(image.width, image.height),
        scale=round(scale, 4),
        format=extension,
        size_bytes=len(encoded),
    )
    return PreparedSource(
        image=image,
        data=encoded,
        extension=extension,
        content_type=content_type,
        scale=scale,
    )


class ImageLoader:
    """
    Fetches and decodes images for the regeneration path.
    transport is injectable so tests can serve URLs with httpx.MockTransport.
    """

    def __init__(
        self,
        gateway: Optional[AssetGateway] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._gateway = gateway
        self._timeout = timeout if timeout is not None else get_settings().http_timeout_seconds
        self._transport = transport

    async def fetch_bytes(self, url: str) -> bytes:
        """Raises DecodeError if the URL cannot be read."""
        if not url:
            raise DecodeError("Image URL is empty.")

        if self._gateway is not None and self._gateway.owns(url):
            try:
                return await asyncio.to_thread(self._gateway.read, url)
            except StorageError as exc:
                raise DecodeError(f"Could not load image {url}: {exc}") from exc

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise DecodeError(f"Could not load image {url}: {exc}") from exc

        log.debug("image_fetched", url=url, size_bytes=len(resp.content))
        return resp.content

    async def load(self, source: ImageInput) -> DecodedImage:
        """Decode a URL or raw bytes. Decoding runs in a worker thread."""
        data = source if isinstance(source, bytes) else await self.fetch_bytes(source)
        return await asyncio.to_thread(decode_image, data)

    async def probe_size(self, url: str) -> tuple[int, int]:
        """(width, height) of the image behind url, from its header only."""
        data = await self.fetch_bytes(url)
        return probe_image_size(data)
