"""
cron.py
-------
Purpose:
    Operator cron entry points. Each call runs one tick of a background job
    and returns its counters.

Notes:
    - Requires the shared secret in the x-admin-key header.
    - Unauthorised calls get 404 so the endpoints are not discoverable.
"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.claim_check_job import run_claim_check_job
from app.jobs.claim_queue_job import run_claim_queue_job
from app.jobs.eligibility_job import run_eligibility_job
from app.jobs.notification_job import run_notification_job
from app.jobs.trip_link_job import run_trip_link_job

router = APIRouter(prefix="/cron", tags=["cron"])
logger = get_logger(__name__)


def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.ADMIN_API_KEY or ""
    provided = x_admin_key or ""
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Rejected cron call without valid admin key")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"ok": False})


@router.post("/eligibility", dependencies=[Depends(require_admin_key)])
async def cron_eligibility():
    """One eligibility pass: examined / updated / skipped counters."""
    return await run_eligibility_job()


@router.post("/trips/link", dependencies=[Depends(require_admin_key)])
async def cron_trip_link():
    return await run_trip_link_job()


@router.post("/claims/worker", dependencies=[Depends(require_admin_key)])
async def cron_claims_worker():
    """One dispatcher tick: processed / result."""
    return await run_claim_queue_job()


@router.post("/claims/check", dependencies=[Depends(require_admin_key)])
async def cron_claims_check():
    return await run_claim_check_job()


@router.post("/notifications", dependencies=[Depends(require_admin_key)])
async def cron_notifications():
    return await run_notification_job()
