from app.services.providers.base import (
    ProviderError,
    ProviderId,
    SubmissionAdapter,
    SubmissionPayload,
    SubmissionResult,
    UnsupportedProviderError,
)
from app.services.providers.registry import (
    claim_url_for,
    get_adapter,
    provider_for_operator,
    register_adapter,
)

__all__ = [
    "ProviderError",
    "ProviderId",
    "SubmissionAdapter",
    "SubmissionPayload",
    "SubmissionResult",
    "UnsupportedProviderError",
    "claim_url_for",
    "get_adapter",
    "provider_for_operator",
    "register_adapter",
]
