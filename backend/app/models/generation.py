# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Generation State Models
Tracks a piece-generation batch from source upload through per-piece
uploads, and carries the per-piece failure report back to the caller.
Also holds the request/response schemas of the generation endpoints.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.models.puzzle import Piece, Point, PuzzleDefinition


class GenerationStage(str, Enum):
    """Batch stage labels, logged on every transition."""
    IDLE = "idle"
    UPLOADING_SOURCE = "uploading_source"
    GENERATING_PIECES = "generating_pieces"
    UPLOADING_PIECES = "uploading_pieces"
    DONE = "done"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class GenerationOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class PieceFailureStage(str, Enum):
    """Where in the per-piece flow a failure happened."""
    RESTORE = "restore"
    EXTRACTION = "extraction"
    UPLOAD = "upload"


class PieceFailure(BaseModel):
    """One failed piece, with enough detail for a selective retry."""
    piece_id: str
    stage: PieceFailureStage
    error_type: str
    error: str
    # True when the piece's polygon may no longer match its kept anchor
    stale_anchor: bool = False


class GenerationResult(BaseModel):
    """
    Result of a generation batch. Partial failure is an expected outcome:
    definition always holds every requested piece, failed ones unchanged.
    """
    puzzle_id: str
    outcome: GenerationOutcome
    stage: GenerationStage
    definition: PuzzleDefinition
    requested: int = Field(0, ge=0)
    succeeded: int = Field(0, ge=0)
    failures: list[PieceFailure] = Field(default_factory=list)

    @property
    def failed_piece_ids(self) -> list[str]:
        return [f.piece_id for f in self.failures]

    @property
    def materialized_pieces(self) -> list[Piece]:
        failed = set(self.failed_piece_ids)
        return [p for p in self.definition.pieces if p.id not in failed]

    def raise_for_outcome(self) -> None:
        """Raise CountMismatchError unless every requested piece succeeded."""
        from app.api.middleware.error_handler import CountMismatchError

        if self.outcome != GenerationOutcome.SUCCESS:
            raise CountMismatchError(self)

    def to_response(self) -> dict:
        """Serialise to the shape returned by the generation endpoints."""
        return {
            "puzzle_id": self.puzzle_id,
            "outcome": self.outcome.value,
            "requested": self.requested,
            "succeeded": self.succeeded,
            "failures": [f.model_dump(mode="json") for f in self.failures],
            "puzzle": self.definition.to_output(),
        }


# ─── API Request/Response Schemas ────────────────────────────────────────────

class PolygonValidationRequest(BaseModel):
    """Request body for POST /polygons/validate."""
    points: list[Point]


class PolygonValidationResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None


class RegenerationRequest(BaseModel):
    """Request body for POST /puzzles/{puzzle_id}/regenerate."""
    definition: PuzzleDefinition
    # piece_id → asset URL invalidated by an edit (reshaped or deleted piece)
    stale_image_urls: dict[str, str] = Field(default_factory=dict)
