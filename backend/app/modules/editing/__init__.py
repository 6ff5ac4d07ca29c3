# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Editing Module
Public API for the immutable puzzle draft and its edits.
"""

from app.modules.editing.piece_editor import (
    AddPiece,
    DeletePiece,
    MovePiece,
    PieceEdit,
    PuzzleDraft,
    RenamePiece,
    ReshapePiece,
    apply_edit,
)

__all__ = [
    "PuzzleDraft",
    "PieceEdit",
    "AddPiece",
    "RenamePiece",
    "MovePiece",
    "ReshapePiece",
    "DeletePiece",
    "apply_edit",
]
