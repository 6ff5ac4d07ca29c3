# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — GET /assets/{file_path}
Serves stored source images and piece rasters at their durable URLs,
e.g. /assets/puzzle-images/{puzzle_id}/{piece_id}.png. The ?v= cache
suffix on those URLs is ignored here.
"""

from __future__ import annotations

import mimetypes
from pathlib import Path, PurePosixPath

from fastapi import APIRouter, HTTPException, Response, status
from fastapi.responses import FileResponse

from app.api.middleware.error_handler import StorageError
from app.core.asset_gateway import LocalAssetGateway, normalize_logical_path
from app.dependencies import AssetGatewayDep
from app.utils.logger import get_logger

router = APIRouter(tags=["assets"])
log = get_logger(__name__)

# Only image extensions are servable; temp upload files never are
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp"}


def _logical_path(bucket: str, file_path: str) -> str:
    """
    Strip the bucket segment and validate the rest.
    Raises HTTPException on traversal, foreign buckets or disallowed extensions.
    """
    head, _, rest = file_path.partition("/")
    if head != bucket or not rest:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Asset '{file_path}' not found.",
        )

    try:
        logical = normalize_logical_path(rest)
    except StorageError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Path traversal not allowed.",
        )

    suffix = PurePosixPath(logical).suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"File type '{suffix}' not servable.",
        )
    return logical


def _safe_resolve(gateway: LocalAssetGateway, logical: str) -> Path:
    """Resolve on disk and make sure symlinks do not escape the bucket."""
    root = gateway.root.resolve()
    requested = gateway.resolve(logical).resolve()
    try:
        requested.relative_to(root)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Path traversal not allowed.",
        )
    return requested


@router.get(
    "/assets/{file_path:path}",
    summary="Retrieve a stored image asset",
    description=(
        "Stream a source image or piece raster. file_path starts with the "
        "bucket name, e.g. 'puzzle-images/{puzzle_id}/{piece_id}.png'."
    ),
)
async def get_asset(file_path: str, gateway: AssetGatewayDep) -> Response:
    logical = _logical_path(gateway.bucket, file_path)
    media_type, _ = mimetypes.guess_type(logical)
    media_type = media_type or "application/octet-stream"

    if isinstance(gateway, LocalAssetGateway):
        resolved = _safe_resolve(gateway, logical)
        if not resolved.is_file():
            log.warning("asset_not_found", file_path=file_path)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Asset '{file_path}' not found.",
            )
        log.debug("asset_served", file_path=file_path, backend="local")
        return FileResponse(path=str(resolved), media_type=media_type)

    try:
        data = gateway.read(gateway.url_for(logical))
    except StorageError:
        log.warning("asset_not_found", file_path=file_path)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Asset '{file_path}' not found.",
        )
    log.debug("asset_served", file_path=file_path, backend="memory")
    return Response(content=data, media_type=media_type)
