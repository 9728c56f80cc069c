"""
Provider-agnostic submission contract.

The dispatcher only ever sees SubmissionPayload in and SubmissionResult
out; everything operator-specific lives behind SubmissionAdapter.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from app.models.domain.claim_domain import Claim


class ProviderId(str, Enum):
    AVANTI = "avanti"
    GWR = "gwr"
    LNER = "lner"
    GTR = "gtr"
    WMT = "wmt"


class ProviderError(Exception):
    """Raised by adapters for failures that should not be reported as a result."""

    def __init__(self, message: str, operation: str = "submit", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class UnsupportedProviderError(ProviderError):
    """No adapter is registered for a provider id."""

    def __init__(self, provider: str):
        super().__init__(f"No submission adapter registered for '{provider}'", "resolve", False)
        self.provider = provider


def delay_band(minutes: int | None) -> str | None:
    """Delay Repay compensation band for a delay in minutes."""
    if minutes is None:
        return None
    if minutes >= 120:
        return "120+"
    if minutes >= 60:
        return "60-119"
    if minutes >= 30:
        return "30-59"
    if minutes >= 15:
        return "15-29"
    return "under-15"


@dataclass(slots=True)
class SubmissionPayload:
    """Everything an adapter needs, snapshotted from the claim row."""

    claim_id: str
    provider: str
    user_email: str
    booking_ref: str | None
    operator: str | None
    origin: str | None
    destination: str | None
    depart_planned: datetime | None
    arrive_planned: datetime | None
    delay_minutes: int | None
    retailer: str | None = None

    @classmethod
    def from_claim(cls, claim: Claim, provider: str) -> "SubmissionPayload":
        return cls(
            claim_id=claim.id,
            provider=provider,
            user_email=claim.user_email,
            booking_ref=claim.booking_ref,
            operator=claim.operator,
            origin=claim.origin,
            destination=claim.destination,
            depart_planned=claim.depart_planned,
            arrive_planned=claim.arrive_planned,
            delay_minutes=claim.delay_minutes,
            retailer=(claim.meta or {}).get("retailer"),
        )

    @property
    def delay_band(self) -> str | None:
        return delay_band(self.delay_minutes)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("depart_planned", "arrive_planned"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(slots=True)
class SubmissionResult:
    """
    Outcome of one adapter run.

    ok with live=False is a dry run that reached the portal and filled the
    form. A live success must also carry confirmed=True.
    """

    ok: bool
    provider: str
    live: bool = False
    confirmed: bool = False
    submitted_at: datetime | None = None
    provider_ref: str | None = None
    error: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        """JSON-safe copy for the queue row's response column."""
        return {
            "ok": self.ok,
            "provider": self.provider,
            "live": self.live,
            "confirmed": self.confirmed,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "provider_ref": self.provider_ref,
            "error": self.error,
            "raw": self.raw,
        }


class SubmissionAdapter(ABC):
    """One operator's claim portal."""

    provider_id: ProviderId

    @abstractmethod
    async def submit(self, payload: SubmissionPayload, *, live: bool) -> SubmissionResult:
        """Fill the operator's claim form; submit it only when live is True."""

    def precheck(self, payload: SubmissionPayload) -> SubmissionResult | None:
        """Refusal result when the payload must not be submitted, else None."""
        if payload.delay_minutes is None:
            return SubmissionResult(
                ok=False, provider=self.provider_id.value, error="delay_minutes_missing"
            )
        if not payload.user_email:
            return SubmissionResult(
                ok=False, provider=self.provider_id.value, error="user_email_missing"
            )
        return None
