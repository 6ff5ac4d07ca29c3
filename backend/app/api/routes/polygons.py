# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — POST /polygons/validate
Lets the editor check a drawn outline before finalizing it as a piece.
An invalid polygon is a normal answer here, not an error response.
"""

from __future__ import annotations

from fastapi import APIRouter

from app.api.middleware.error_handler import GeometryError
from app.models.generation import PolygonValidationRequest, PolygonValidationResponse
from app.modules.geometry import validate_polygon
from app.utils.logger import get_logger

router = APIRouter(tags=["polygons"])
log = get_logger(__name__)


@router.post(
    "/polygons/validate",
    response_model=PolygonValidationResponse,
    summary="Validate a piece outline",
    description=(
        "Checks that the outline has at least 3 vertices inside the image "
        "and that no two non-adjacent edges cross."
    ),
)
async def validate(body: PolygonValidationRequest) -> PolygonValidationResponse:
    try:
        validate_polygon(body.points)
    except GeometryError as exc:
        log.debug("polygon_rejected", vertices=len(body.points), reason=str(exc))
        return PolygonValidationResponse(valid=False, reason=str(exc))
    return PolygonValidationResponse(valid=True)
