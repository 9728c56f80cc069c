from uuid import UUID

from pydantic import BaseModel


class StartClaimRequest(BaseModel):
    """Request body for POST /claims/start."""

    trip_id: UUID
