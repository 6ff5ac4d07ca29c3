# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Piece Editor
Immutable puzzle draft plus an explicit apply_edit function.

    draft = PuzzleDraft(definition=definition)
    draft = apply_edit(draft, AddPiece(points=[...]))
    draft = apply_edit(draft, RenamePiece(piece_id=..., name="Sky"))

Every edit returns a new draft. Edits that change where a piece is cut
from (reshape, move) invalidate a materialized raster: image_url is
cleared and the old URL lands in stale_image_urls so the next
regeneration deletes it. Deleting a materialized piece records its URL
the same way, under an id that no longer exists (an orphan).
"""

from __future__ import annotations

import uuid
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.api.middleware.error_handler import GeometryError, PieceNotFoundError
from app.models.puzzle import Piece, Point, PuzzleDefinition
from app.modules.geometry.coordinate_transform import polygon_centroid
from app.modules.geometry.polygon_validator import validate_polygon
from app.utils.logger import get_logger

log = get_logger(__name__)


class PuzzleDraft(BaseModel):
    """Editor state: the definition being edited and assets it invalidated."""
    model_config = ConfigDict(frozen=True)

    definition: PuzzleDefinition = Field(default_factory=PuzzleDefinition)
    # piece_id → previously uploaded raster that no longer matches the piece
    stale_image_urls: dict[str, str] = Field(default_factory=dict)

    @property
    def needs_regeneration(self) -> bool:
        return bool(self.stale_image_urls) or any(
            not p.is_materialized for p in self.definition.pieces
        )


# ─── Edits ───────────────────────────────────────────────────────────────────

class AddPiece(BaseModel):
    """Finalize a freshly drawn polygon (source-relative points)."""
    kind: Literal["add"] = "add"
    points: list[Point]
    name: Optional[str] = None
    piece_id: Optional[str] = None


class RenamePiece(BaseModel):
    kind: Literal["rename"] = "rename"
    piece_id: str
    name: Optional[str] = None


class MovePiece(BaseModel):
    """Translate a piece by a relative offset of the source image."""
    kind: Literal["move"] = "move"
    piece_id: str
    dx: float
    dy: float
    # Current source-relative outline; required for materialized pieces
    points: Optional[list[Point]] = None


class ReshapePiece(BaseModel):
    """Replace a piece's outline with new source-relative points."""
    kind: Literal["reshape"] = "reshape"
    piece_id: str
    points: list[Point]


class DeletePiece(BaseModel):
    kind: Literal["delete"] = "delete"
    piece_id: str


PieceEdit = Annotated[
    Union[AddPiece, RenamePiece, MovePiece, ReshapePiece, DeletePiece],
    Field(discriminator="kind"),
]


# ─── Apply ───────────────────────────────────────────────────────────────────

def _find(draft: PuzzleDraft, piece_id: str) -> tuple[int, Piece]:
    for idx, piece in enumerate(draft.definition.pieces):
        if piece.id == piece_id:
            return idx, piece
    raise PieceNotFoundError(piece_id)


def _replace(draft: PuzzleDraft, idx: int, piece: Optional[Piece]) -> list[Piece]:
    pieces = list(draft.definition.pieces)
    if piece is None:
        del pieces[idx]
    else:
        pieces[idx] = piece
    return pieces


def _with(
    draft: PuzzleDraft,
    pieces: list[Piece],
    stale: Optional[dict[str, str]] = None,
) -> PuzzleDraft:
    return PuzzleDraft(
        definition=draft.definition.model_copy(update={"pieces": pieces}),
        stale_image_urls=stale if stale is not None else dict(draft.stale_image_urls),
    )


def _outline(piece: Piece, points: list[Point]) -> Piece:
    """New source-frame outline; any raster is invalidated."""
    validate_polygon(points)
    anchor = polygon_centroid(points)
    return piece.model_copy(update={
        "polygon_points": list(points),
        "original_x": anchor.x,
        "original_y": anchor.y,
        "image_url": "",
    })


def _invalidate(draft: PuzzleDraft, piece: Piece) -> dict[str, str]:
    stale = dict(draft.stale_image_urls)
    if piece.is_materialized:
        # Keep the first URL: it is the asset actually stored
        stale.setdefault(piece.id, piece.image_url)
    return stale


def apply_edit(draft: PuzzleDraft, edit: PieceEdit) -> PuzzleDraft:
    """
    Return a new draft with edit applied. The input draft is untouched.

    Raises:
        GeometryError:      the resulting outline is not a valid polygon
        PieceNotFoundError: the edit names an unknown piece
    """
    if isinstance(edit, AddPiece):
        validate_polygon(edit.points)
        piece_id = edit.piece_id or str(uuid.uuid4())
        if any(p.id == piece_id for p in draft.definition.pieces):
            raise GeometryError(f"A piece with id '{piece_id}' already exists.")
        anchor = polygon_centroid(edit.points)
        piece = Piece(
            id=piece_id,
            name=edit.name,
            polygon_points=list(edit.points),
            original_x=anchor.x,
            original_y=anchor.y,
        )
        log.debug("piece_added", piece_id=piece_id, vertices=len(edit.points))
        return _with(draft, [*draft.definition.pieces, piece])

    idx, piece = _find(draft, edit.piece_id)

    if isinstance(edit, RenamePiece):
        return _with(draft, _replace(draft, idx, piece.model_copy(update={"name": edit.name})))

    if isinstance(edit, ReshapePiece):
        log.debug("piece_reshaped", piece_id=piece.id, invalidated=piece.is_materialized)
        return _with(
            draft,
            _replace(draft, idx, _outline(piece, edit.points)),
            _invalidate(draft, piece),
        )

    if isinstance(edit, MovePiece):
        if piece.is_materialized and edit.points is None:
            raise GeometryError(
                "Moving a materialized piece needs its source-relative outline."
            )
        base = edit.points if edit.points is not None else piece.polygon_points
        try:
            moved = [Point(x=p.x + edit.dx, y=p.y + edit.dy) for p in base]
        except ValueError as exc:
            raise GeometryError("The moved piece would leave the image.") from exc
        return _with(
            draft,
            _replace(draft, idx, _outline(piece, moved)),
            _invalidate(draft, piece),
        )

    if isinstance(edit, DeletePiece):
        log.debug("piece_deleted", piece_id=piece.id, orphaned=piece.is_materialized)
        return _with(draft, _replace(draft, idx, None), _invalidate(draft, piece))

    raise TypeError(f"Unsupported edit: {type(edit).__name__}")
