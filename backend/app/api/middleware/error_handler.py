# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Error Taxonomy + Global Error Handler
Defines the generation error hierarchy and converts it into structured
JSON error responses. Registered on the FastAPI app in main.py.

    GeometryError       polygon < 3 points, out of range, or self-intersecting
    SurfaceError        raster surface could not be created or encoded
    DecodeError         source or piece image could not be loaded/decoded
    StorageError        asset upload/delete failed
    CountMismatchError  fewer pieces produced than requested
    PieceNotFoundError  an edit names an unknown piece
"""

from __future__ import annotations

import traceback
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.utils.logger import get_logger

if TYPE_CHECKING:
    from app.models.generation import GenerationResult

log = get_logger(__name__)


class PuzzleError(Exception):
    """Base class for every piece-generation error."""


class GeometryError(PuzzleError, ValueError):
    """Raised when a polygon is structurally invalid or self-intersects."""


class SurfaceError(PuzzleError, RuntimeError):
    """Raised when a drawing surface cannot be created or encoded."""


class DecodeError(PuzzleError, ValueError):
    """Raised when an image source cannot be fetched or decoded."""


class StorageError(PuzzleError, RuntimeError):
    """Raised when the asset gateway fails to upload or delete."""


class PieceNotFoundError(PuzzleError, KeyError):
    """Raised when an edit names a piece that is not in the draft."""


class CountMismatchError(PuzzleError):
    """
    Raised when a batch produced fewer pieces than requested.
    Carries the full GenerationResult so the successful subset is usable.
    """

    def __init__(self, result: "GenerationResult") -> None:
        self.result = result
        super().__init__(
            f"{result.succeeded} of {result.requested} pieces generated; "
            f"failed: {', '.join(result.failed_piece_ids)}"
        )


def _error_body(code: str, message: str, detail: str | None = None) -> dict:
    body = {"error": {"code": code, "message": message}}
    if detail:
        body["error"]["detail"] = detail
    return body


def register_error_handlers(app: FastAPI) -> None:
    """
    Register all global exception handlers on the FastAPI application.
    Call this in main.py after creating the app instance.
    """

    @app.exception_handler(GeometryError)
    async def geometry_error_handler(
        req: Request, exc: GeometryError
    ) -> JSONResponse:
        log.warning("geometry_error", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(code="GEOMETRY_ERROR", message=str(exc)),
        )

    @app.exception_handler(DecodeError)
    async def decode_error_handler(
        req: Request, exc: DecodeError
    ) -> JSONResponse:
        log.warning("decode_error", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(code="DECODE_ERROR", message=str(exc)),
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(
        req: Request, exc: StorageError
    ) -> JSONResponse:
        log.error("storage_error", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=_error_body(code="STORAGE_ERROR", message=str(exc)),
        )

    @app.exception_handler(SurfaceError)
    async def surface_error_handler(
        req: Request, exc: SurfaceError
    ) -> JSONResponse:
        log.error("surface_error", path=str(req.url), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(code="SURFACE_ERROR", message=str(exc)),
        )

    @app.exception_handler(CountMismatchError)
    async def count_mismatch_handler(
        req: Request, exc: CountMismatchError
    ) -> JSONResponse:
        from app.models.generation import GenerationOutcome

        result = exc.result
        partial = result.outcome == GenerationOutcome.PARTIAL_FAILURE
        log.warning(
            "generation_incomplete",
            path=str(req.url),
            outcome=result.outcome.value,
            failed=result.failed_piece_ids,
        )
        body = result.to_response()
        body.update(_error_body(
            code="PARTIAL_FAILURE" if partial else "GENERATION_FAILED",
            message=str(exc),
        ))
        return JSONResponse(
            status_code=(
                status.HTTP_207_MULTI_STATUS if partial
                else status.HTTP_502_BAD_GATEWAY
            ),
            content=body,
        )

    @app.exception_handler(Exception)
    async def generic_handler(req: Request, exc: Exception) -> JSONResponse:
        tb = traceback.format_exc()
        log.error(
            "unhandled_exception",
            path=str(req.url),
            error=str(exc),
            exc_type=type(exc).__name__,
            traceback=tb,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                code="INTERNAL_SERVER_ERROR",
                message="An unexpected error occurred.",
            ),
        )
