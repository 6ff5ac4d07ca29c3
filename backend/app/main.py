# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — FastAPI Application Entry Point
Builds the app: lifespan (logging, asset gateway, generator), CORS for the
editor front-end, global error handlers and the polygon, puzzle and
asset routers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.middleware.error_handler import register_error_handlers
from app.api.routes import assets, polygons, puzzles
from app.config import get_settings
from app.dependencies import init_asset_gateway, init_generator
from app.utils.logger import APP_NAME, APP_VERSION, configure_logging, get_logger

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging, then the AssetGateway and the PuzzleGenerator
    built on it. Nothing is held open, so shutdown only logs.
    """
    configure_logging()
    settings = get_settings()

    log.info(
        "piececutter_startup",
        asset_backend=settings.asset_backend,
        bucket=settings.asset_bucket,
        padding_px=settings.bbox_padding_px,
        max_workers=settings.extraction_max_workers,
        optimize_source=settings.optimize_source_image,
    )

    init_asset_gateway()
    init_generator()

    log.info("piececutter_ready")
    yield
    log.info("piececutter_shutdown")


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="PieceCutter",
        summary="Cuts jigsaw piece images out of a source picture, one polygon at a time.",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # ── Routers ──────────────────────────────────────────────────────────────
    app.include_router(polygons.router)
    app.include_router(puzzles.router)
    app.include_router(assets.router)

    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict:
        return {
            "status": "ok",
            "service": APP_NAME,
            "version": APP_VERSION,
            "asset_backend": settings.asset_backend,
            "bucket": settings.asset_bucket,
        }

    return app


# Module-level app instance for uvicorn
app = create_app()
