from pydantic import BaseModel


class StartClaimResponse(BaseModel):
    ok: bool = True
    claim_id: str
    status: str
    reused: bool = False
    provider: str | None = None
    queue_id: str | None = None
    queue_status: str | None = None


class QueueClaimResponse(BaseModel):
    ok: bool = True
    claim_id: str
    provider: str
    queue_id: str | None = None
    queue_status: str | None = None
    created: bool

