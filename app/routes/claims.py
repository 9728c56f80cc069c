"""
claims.py
---------
Purpose:
    User-facing claim endpoints.

Usage:
    1. POST /claims/start - Create (or reuse) the claim for one of my trips
    2. POST /claims/{claim_id}/queue - Queue a pending claim for submission
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response

from app.auth.verify import current_user_email
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.api.claim_request import StartClaimRequest
from app.models.api.claim_response import QueueClaimResponse, StartClaimResponse
from app.services.claim_service import (
    ClaimServiceError,
    UnsupportedOperatorError,
    create_claim,
    queue_existing,
)

router = APIRouter(prefix="/claims", tags=["claims"])
logger = get_logger(__name__)

NO_STORE = "no-store, no-cache, must-revalidate, max-age=0"


def _raise_for(e: ClaimServiceError) -> None:
    detail: dict = {"ok": False, "error": str(e)}
    if isinstance(e, UnsupportedOperatorError):
        detail["operator"] = e.operator
    raise HTTPException(status_code=e.status_code, detail=detail) from e


@router.post("/start", response_model=StartClaimResponse)
async def start_claim(
    body: StartClaimRequest, response: Response, user_email: str = Depends(current_user_email)
):
    """
    Create the claim for a trip owned by the caller.

    Calling again while the claim is not failed returns it with reused=true.

    Raises:
        400: Operator not supported
        404: Trip not found for this user
    """
    response.headers["Cache-Control"] = NO_STORE
    try:
        result = await create_claim(str(body.trip_id), user_email)
    except ClaimServiceError as e:
        logger.info("Claim start rejected", trip_id=str(body.trip_id), error=str(e))
        _raise_for(e)
    except DatabaseError as e:
        logger.error("Claim start failed", trip_id=str(body.trip_id), error=str(e))
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Database error"}) from e

    return StartClaimResponse(
        claim_id=result.claim_id,
        status=result.status,
        reused=result.reused,
        provider=result.provider,
        queue_id=result.queue_id,
        queue_status=result.queue_status,
    )


@router.post("/{claim_id}/queue", response_model=QueueClaimResponse)
async def queue_claim(claim_id: UUID, response: Response, user_email: str = Depends(current_user_email)):
    """
    Queue a pending claim.

    Raises:
        404: Claim (or its trip) not found
        409: Claim is not pending
    """
    response.headers["Cache-Control"] = NO_STORE
    try:
        result = await queue_existing(str(claim_id), user_email)
    except ClaimServiceError as e:
        logger.info("Claim queue rejected", claim_id=str(claim_id), error=str(e))
        _raise_for(e)
    except DatabaseError as e:
        logger.error("Claim queue failed", claim_id=str(claim_id), error=str(e))
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Database error"}) from e

    return QueueClaimResponse(**result)
