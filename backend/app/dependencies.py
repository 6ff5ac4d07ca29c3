# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — FastAPI Dependencies
Singleton providers for the AssetGateway and the PuzzleGenerator.
Both are instantiated once at startup via the lifespan event in main.py
and stored here as module-level singletons.
Route handlers access them via FastAPI's Depends() injection.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from app.config import get_settings
from app.core.asset_gateway import AssetGateway, InMemoryAssetGateway, LocalAssetGateway
from app.core.generator import PuzzleGenerator
from app.utils.logger import get_logger

log = get_logger(__name__)

# ─── AssetGateway Singleton ──────────────────────────────────────────────────

_asset_gateway: AssetGateway | None = None
_generator: PuzzleGenerator | None = None


def init_asset_gateway() -> None:
    """
    Initialise the AssetGateway singleton based on ASSET_BACKEND config.
    Called once during application lifespan startup.
    """
    global _asset_gateway
    settings = get_settings()

    if settings.asset_backend == "memory":
        log.info("init_asset_gateway", backend="memory", bucket=settings.asset_bucket)
        _asset_gateway = InMemoryAssetGateway(
            base_url=settings.assets_base_url,
            bucket=settings.asset_bucket,
        )
    else:
        log.info(
            "init_asset_gateway",
            backend="local",
            root=str(settings.bucket_dir),
            bucket=settings.asset_bucket,
        )
        _asset_gateway = LocalAssetGateway(
            root=settings.bucket_dir,
            base_url=settings.assets_base_url,
            bucket=settings.asset_bucket,
        )


def init_generator() -> None:
    """Initialise the PuzzleGenerator on top of the gateway singleton."""
    global _generator
    _generator = PuzzleGenerator(gateway=get_asset_gateway())


def get_asset_gateway() -> AssetGateway:
    """FastAPI dependency: inject the AssetGateway singleton."""
    if _asset_gateway is None:
        raise RuntimeError(
            "AssetGateway has not been initialised. "
            "Ensure init_asset_gateway() is called during app lifespan startup."
        )
    return _asset_gateway


def get_generator() -> PuzzleGenerator:
    """FastAPI dependency: inject the PuzzleGenerator singleton."""
    if _generator is None:
        raise RuntimeError(
            "PuzzleGenerator has not been initialised. "
            "Ensure init_generator() is called during app lifespan startup."
        )
    return _generator


# Annotated type aliases for clean route signatures
AssetGatewayDep = Annotated[AssetGateway, Depends(get_asset_gateway)]
GeneratorDep = Annotated[PuzzleGenerator, Depends(get_generator)]
