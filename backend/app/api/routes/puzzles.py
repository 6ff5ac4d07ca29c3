# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — POST /puzzles/{puzzle_id}/pieces + POST /puzzles/{puzzle_id}/regenerate
Runs a generation batch and returns the updated puzzle definition.

Full success returns 200. Partial and total failure are raised as
CountMismatchError and mapped to 207 / 502 by the error handlers, with
the same result body so the successful subset is never lost.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Form, HTTPException, UploadFile, status
from pydantic import TypeAdapter, ValidationError

from app.api.middleware.error_handler import DecodeError
from app.config import get_settings
from app.dependencies import GeneratorDep
from app.models.generation import RegenerationRequest
from app.models.puzzle import Piece, PuzzleDefinition
from app.utils.logger import get_logger

router = APIRouter(tags=["puzzles"])
log = get_logger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}

_pieces_adapter = TypeAdapter(list[Piece])


async def _read_upload(upload: UploadFile) -> bytes:
    """
    Read and size-check an uploaded source image.
    Raises DecodeError on format/size failures; decoding happens in the generator.
    """
    settings = get_settings()

    if upload.content_type not in ALLOWED_CONTENT_TYPES:
        raise DecodeError(
            f"Unsupported file type '{upload.content_type}'. "
            f"Allowed: {', '.join(sorted(ALLOWED_CONTENT_TYPES))}"
        )

    data = await upload.read()

    if not data:
        raise DecodeError(f"File '{upload.filename}' is empty.")

    if len(data) > settings.upload_max_bytes:
        raise DecodeError(
            f"File '{upload.filename}' exceeds maximum size "
            f"of {settings.upload_max_mb} MB."
        )
    return data


def _parse_form_json(field: str, raw: str, parse):
    try:
        return parse(raw)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "field": field,
                "errors": exc.errors(include_url=False, include_context=False),
            },
        )


@router.post(
    "/puzzles/{puzzle_id}/pieces",
    summary="Generate pieces against a new source image",
    description=(
        "Upload a source image together with the piece list as a JSON form "
        "field. Optionally pass the previous puzzle definition (needed to "
        "re-cut pieces that were already materialized) or just the old "
        "source image URL, which is deleted once the new one is stored."
    ),
)
async def create_pieces(
    puzzle_id: str,
    image: UploadFile,
    generator: GeneratorDep,
    pieces: Annotated[str, Form()] = "[]",
    previous: Annotated[Optional[str], Form()] = None,
    old_image_url: Annotated[Optional[str], Form()] = None,
) -> dict:
    log.info("create_request_received", puzzle_id=puzzle_id)

    piece_list = _parse_form_json("pieces", pieces, _pieces_adapter.validate_json)
    prior: Optional[PuzzleDefinition] = None
    if previous:
        prior = _parse_form_json("previous", previous, PuzzleDefinition.model_validate_json)
    elif old_image_url:
        prior = PuzzleDefinition(image_url=old_image_url)

    data = await _read_upload(image)

    result = await generator.create_with_new_image(puzzle_id, data, piece_list, prior)
    result.raise_for_outcome()
    return result.to_response()


@router.post(
    "/puzzles/{puzzle_id}/regenerate",
    summary="Regenerate every piece from the stored source image",
    description=(
        "Re-cuts every piece of the definition from its image_url. "
        "stale_image_urls maps piece ids to assets invalidated by edits; "
        "they are deleted before the replacement upload."
    ),
)
async def regenerate_pieces(
    puzzle_id: str,
    body: RegenerationRequest,
    generator: GeneratorDep,
) -> dict:
    log.info(
        "regenerate_request_received",
        puzzle_id=puzzle_id,
        pieces=len(body.definition.pieces),
    )
    result = await generator.regenerate_from_existing(
        puzzle_id, body.definition, body.stale_image_urls
    )
    result.raise_for_outcome()
    return result.to_response()
