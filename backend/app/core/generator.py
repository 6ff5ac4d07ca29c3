# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Generation Orchestrator
Generates and uploads the raster of every piece of a puzzle.

Two entry points:
  create_with_new_image    upload a new source image, then cut every piece
  regenerate_from_existing re-cut every piece from the stored source image,
                           replacing stale piece assets

Batch stages (logged on every transition):
  IDLE → UPLOADING_SOURCE → GENERATING_PIECES → UPLOADING_PIECES
       → DONE | PARTIAL_FAILURE | FAILED

The source image is decoded once and shared read-only by every
extraction. Extractions run in worker threads, bounded by a semaphore,
and are joined before any piece upload starts. A failing piece never
aborts its siblings; it is reported in GenerationResult.failures and
keeps its previous state in the returned definition.
"""

from __future__ import annotations

import asyncio
import hashlib
import traceback
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from app.api.middleware.error_handler import DecodeError, GeometryError, StorageError
from app.config import get_settings
from app.core.asset_gateway import AssetGateway, piece_asset_path, source_asset_path
from app.core.image_source import DecodedImage, ImageLoader, prepare_source
from app.models.generation import (
    GenerationOutcome,
    GenerationResult,
    GenerationStage,
    PieceFailure,
    PieceFailureStage,
)
from app.models.puzzle import Piece, Point, PuzzleDefinition
from app.modules.extraction.piece_extractor import (
    PIECE_CONTENT_TYPE,
    ExtractedPiece,
    extract_piece,
)
from app.modules.extraction.raster_surface import SurfaceFactory, new_surface
from app.modules.geometry.coordinate_transform import anchor_from_bbox, restore_polygon
from app.utils.logger import get_logger, log_context

log = get_logger(__name__)


@dataclass
class _PieceWork:
    """Mutable per-piece scratch state for one batch."""
    piece: Piece
    # Polygon relative to the source image; None until restored
    polygon: Optional[list[Point]] = None
    stale_urls: list[str] = field(default_factory=list)
    extracted: Optional[ExtractedPiece] = None
    url: Optional[str] = None
    failure: Optional[PieceFailure] = None


def _failure(work: _PieceWork, stage: PieceFailureStage, exc: BaseException) -> PieceFailure:
    return PieceFailure(
        piece_id=work.piece.id,
        stage=stage,
        error_type=type(exc).__name__,
        error=str(exc),
        # A source-frame polygon means the kept anchor was never derived from it
        stale_anchor=not work.piece.is_materialized,
    )


def _versioned(url: str, data: bytes) -> str:
    # Content-derived query so a regenerated piece never hits a stale cache
    digest = hashlib.sha1(data).hexdigest()[:12]
    return f"{url}?v={digest}"


def _unversioned(url: str) -> str:
    return url.split("?", 1)[0]


class PuzzleGenerator:
    """Orchestrates piece generation against an AssetGateway."""

    def __init__(
        self,
        gateway: AssetGateway,
        loader: Optional[ImageLoader] = None,
        surface_factory: SurfaceFactory = new_surface,
        max_workers: Optional[int] = None,
        padding: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self._gateway = gateway
        self._loader = loader or ImageLoader(gateway=gateway)
        self._surface_factory = surface_factory
        self._max_workers = max(1, max_workers or settings.extraction_max_workers)
        self._padding = padding if padding is not None else settings.bbox_padding_px

    # ─── Entry Points ────────────────────────────────────────────────────────

    async def create_with_new_image(
        self,
        puzzle_id: str,
        image_data: bytes,
        pieces: Sequence[Piece],
        previous: Optional[PuzzleDefinition] = None,
    ) -> GenerationResult:
        """
        Upload a new source image and generate every piece against it.

        Pieces that are not yet materialized carry source-relative polygons.
        Materialized pieces are restored to the source frame using the
        dimensions of the previous definition they were cut from.

        Raises:
            DecodeError:  the uploaded image cannot be decoded
            StorageError: the source image cannot be uploaded
        """
        with log_context(puzzle_id=puzzle_id):
            self._enter(GenerationStage.IDLE, pieces=len(pieces))

            self._enter(GenerationStage.UPLOADING_SOURCE)
            prepared = await asyncio.to_thread(prepare_source, image_data)
            source_url = await asyncio.to_thread(
                self._gateway.upload,
                prepared.data,
                source_asset_path(puzzle_id, prepared.extension),
                prepared.content_type,
            )
            source_url = _versioned(source_url, prepared.data)
            log.info(
                "source_uploaded",
                url=source_url,
                width=prepared.image.width,
                height=prepared.image.height,
            )

            if previous is not None and previous.image_url:
                if _unversioned(previous.image_url) != _unversioned(source_url):
                    await self._delete_quietly(previous.image_url, reason="replaced_source")

            if previous is not None:
                kept = {p.id for p in pieces}
                orphans = [
                    p.image_url for p in previous.pieces
                    if p.id not in kept and p.image_url
                ]
                if orphans:
                    await asyncio.gather(*(
                        self._delete_quietly(url, reason="orphaned_piece") for url in orphans
                    ))

            definition = PuzzleDefinition(
                image_url=source_url,
                image_width=prepared.image.width,
                image_height=prepared.image.height,
                pieces=list(pieces),
            )

            if not pieces:
                return self._finish(puzzle_id, definition, [])

            work = [_PieceWork(piece=p) for p in pieces]
            await self._restore_polygons(work, previous)
            return await self._generate(puzzle_id, definition, prepared.image, work)

    async def regenerate_from_existing(
        self,
        puzzle_id: str,
        definition: PuzzleDefinition,
        stale_image_urls: Optional[Mapping[str, str]] = None,
    ) -> GenerationResult:
        """
        Regenerate every piece from the already stored source image.

        stale_image_urls maps piece ids to assets invalidated by an edit.
        Entries whose piece no longer exists are orphaned assets and are
        deleted. All deletions are best-effort.

        Raises:
            DecodeError: the source image cannot be fetched or decoded
        """
        stale_image_urls = dict(stale_image_urls or {})
        with log_context(puzzle_id=puzzle_id):
            self._enter(
                GenerationStage.IDLE,
                pieces=len(definition.pieces),
                stale=len(stale_image_urls),
            )
            if not definition.image_url:
                raise DecodeError("Puzzle has no source image to regenerate from.")

            piece_ids = {p.id for p in definition.pieces}
            orphans = [
                url for pid, url in stale_image_urls.items()
                if pid not in piece_ids and url
            ]
            if orphans:
                await asyncio.gather(*(
                    self._delete_quietly(url, reason="orphaned_piece") for url in orphans
                ))

            if not definition.pieces:
                return self._finish(puzzle_id, definition, [])

            work = []
            for p in definition.pieces:
                w = _PieceWork(piece=p)
                for url in (p.image_url, stale_image_urls.get(p.id, "")):
                    if url and url not in w.stale_urls:
                        w.stale_urls.append(url)
                work.append(w)

            source = await self._loader.load(definition.image_url)
            if (source.width, source.height) != (definition.image_width, definition.image_height):
                log.warning(
                    "source_dimensions_mismatch",
                    stored=(definition.image_width, definition.image_height),
                    decoded=(source.width, source.height),
                )

            await self._restore_polygons(work, definition)
            current = definition.model_copy(
                update={"image_width": source.width, "image_height": source.height}
            )
            return await self._generate(puzzle_id, current, source, work)

    # ─── Batch Stages ────────────────────────────────────────────────────────

    async def _restore_polygons(
        self,
        work: list[_PieceWork],
        frame: Optional[PuzzleDefinition],
    ) -> None:
        """
        Bring every polygon into the source frame. Materialized pieces
        need their raster's pixel size, read from the stored asset.
        """
        async def _restore(w: _PieceWork) -> None:
            piece = w.piece
            if not piece.is_materialized:
                w.polygon = list(piece.polygon_points)
                return
            try:
                if frame is None or frame.image_width <= 0 or frame.image_height <= 0:
                    raise GeometryError(
                        "Materialized piece cannot be restored without the "
                        "dimensions of the image it was cut from."
                    )
                raster_w, raster_h = await self._loader.probe_size(piece.image_url)
                w.polygon = restore_polygon(
                    piece.polygon_points,
                    raster_w,
                    raster_h,
                    piece.original_x,
                    piece.original_y,
                    frame.image_width,
                    frame.image_height,
                )
            except Exception as exc:
                w.failure = _failure(w, PieceFailureStage.RESTORE, exc)
                log.warning(
                    "piece_restore_failed",
                    piece_id=piece.id,
                    error=str(exc),
                    exc_type=type(exc).__name__,
                )

        await asyncio.gather(*(_restore(w) for w in work))

    async def _generate(
        self,
        puzzle_id: str,
        definition: PuzzleDefinition,
        source: DecodedImage,
        work: list[_PieceWork],
    ) -> GenerationResult:
        # ── Extraction (parallel, joined before upload) ──────────────────────
        self._enter(GenerationStage.GENERATING_PIECES, workers=self._max_workers)
        semaphore = asyncio.Semaphore(self._max_workers)

        async def _extract(w: _PieceWork) -> None:
            if w.failure is not None:
                return
            async with semaphore:
                try:
                    w.extracted = await asyncio.to_thread(
                        extract_piece,
                        source.pixels,
                        w.polygon,
                        source.width,
                        source.height,
                        self._padding,
                        self._surface_factory,
                    )
                except Exception as exc:
                    w.failure = _failure(w, PieceFailureStage.EXTRACTION, exc)
                    log.warning(
                        "piece_extraction_failed",
                        piece_id=w.piece.id,
                        error=str(exc),
                        exc_type=type(exc).__name__,
                        traceback=traceback.format_exc(),
                    )

        await asyncio.gather(*(_extract(w) for w in work))

        # ── Upload (parallel, stale assets deleted first) ────────────────────
        self._enter(
            GenerationStage.UPLOADING_PIECES,
            ready=sum(1 for w in work if w.extracted is not None),
        )

        async def _upload(w: _PieceWork) -> None:
            if w.extracted is None:
                return
            target = piece_asset_path(puzzle_id, w.piece.id)
            for stale in w.stale_urls:
                # Same-path assets are overwritten in place, never deleted first
                if self._path_of(stale) == target:
                    continue
                await self._delete_quietly(stale, reason="stale_piece", piece_id=w.piece.id)
            data = w.extracted.image_bytes
            try:
                url = await asyncio.to_thread(
                    self._gateway.upload,
                    data,
                    target,
                    PIECE_CONTENT_TYPE,
                )
                w.url = _versioned(url, data)
            except Exception as exc:
                w.failure = _failure(w, PieceFailureStage.UPLOAD, exc)
                log.warning(
                    "piece_upload_failed",
                    piece_id=w.piece.id,
                    error=str(exc),
                    exc_type=type(exc).__name__,
                )

        await asyncio.gather(*(_upload(w) for w in work))

        # ── Assemble ─────────────────────────────────────────────────────────
        pieces: list[Piece] = []
        failures: list[PieceFailure] = []
        for w in work:
            if w.failure is not None or w.extracted is None or w.url is None:
                pieces.append(w.piece)
                if w.failure is not None:
                    failures.append(w.failure)
                continue
            anchor_x, anchor_y = anchor_from_bbox(
                w.extracted.bbox, definition.image_width, definition.image_height
            )
            pieces.append(w.piece.model_copy(update={
                "polygon_points": w.extracted.cropped_polygon,
                "original_x": anchor_x,
                "original_y": anchor_y,
                "image_url": w.url,
            }))

        final = definition.model_copy(update={"pieces": pieces})
        return self._finish(puzzle_id, final, failures)

    # ─── Helpers ─────────────────────────────────────────────────────────────

    def _path_of(self, url: str) -> Optional[str]:
        """Logical path of an owned url, None for foreign or malformed ones."""
        if not self._gateway.owns(url):
            return None
        try:
            return self._gateway.path_from_url(url)
        except StorageError:
            return None

    def _enter(self, stage: GenerationStage, **context) -> None:
        log.info("stage_start", stage=stage.value, **context)

    def _finish(
        self,
        puzzle_id: str,
        definition: PuzzleDefinition,
        failures: list[PieceFailure],
    ) -> GenerationResult:
        requested = len(definition.pieces)
        succeeded = requested - len(failures)

        if succeeded == requested:
            outcome, stage = GenerationOutcome.SUCCESS, GenerationStage.DONE
        elif succeeded > 0:
            outcome, stage = GenerationOutcome.PARTIAL_FAILURE, GenerationStage.PARTIAL_FAILURE
        else:
            outcome, stage = GenerationOutcome.FAILURE, GenerationStage.FAILED

        self._enter(
            stage,
            requested=requested,
            succeeded=succeeded,
            failed=[f.piece_id for f in failures],
        )
        return GenerationResult(
            puzzle_id=puzzle_id,
            outcome=outcome,
            stage=stage,
            definition=definition,
            requested=requested,
            succeeded=succeeded,
            failures=failures,
        )

    async def _delete_quietly(self, url: str, reason: str, **context) -> None:
        """Best-effort delete. Failures are logged and ignored."""
        try:
            await asyncio.to_thread(self._gateway.delete, url)
            log.debug("asset_cleanup", url=url, reason=reason, **context)
        except Exception as exc:
            log.warning(
                "asset_cleanup_failed",
                url=url,
                reason=reason,
                error=str(exc),
                exc_type=type(exc).__name__,
                **context,
            )
