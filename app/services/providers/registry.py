"""
Provider registry.

Operator names map to a ProviderId through a fixed table; each ProviderId
maps to exactly one adapter, built once at import.
"""

from app.services.providers.base import (
    ProviderId,
    SubmissionAdapter,
    UnsupportedProviderError,
)
from app.services.providers.operators import PORTALS
from app.services.providers.portal import PortalSubmissionAdapter

# Checked in order, first substring hit wins.
OPERATOR_RULES: tuple[tuple[tuple[str, ...], ProviderId], ...] = (
    (("great western", "gwr"), ProviderId.GWR),
    (("avanti",), ProviderId.AVANTI),
    (("west midlands", "london northwestern"), ProviderId.WMT),
    (("lner", "london north eastern"), ProviderId.LNER),
    (("thameslink", "southern", "great northern", "gtr"), ProviderId.GTR),
)

_ADAPTERS: dict[ProviderId, SubmissionAdapter] = {
    provider_id: PortalSubmissionAdapter(config) for provider_id, config in PORTALS.items()
}


def provider_for_operator(operator: str | None) -> ProviderId | None:
    """Deterministic operator name -> provider lookup; None when unmapped."""
    name = (operator or "").strip().lower()
    if not name:
        return None
    for needles, provider_id in OPERATOR_RULES:
        if any(needle in name for needle in needles):
            return provider_id
    return None


def get_adapter(provider: ProviderId | str) -> SubmissionAdapter:
    try:
        provider_id = ProviderId(provider)
    except ValueError as e:
        raise UnsupportedProviderError(str(provider)) from e

    adapter = _ADAPTERS.get(provider_id)
    if adapter is None:
        raise UnsupportedProviderError(provider_id.value)
    return adapter


def register_adapter(adapter: SubmissionAdapter) -> None:
    """Replace or add the adapter for its provider id."""
    _ADAPTERS[adapter.provider_id] = adapter


def claim_url_for(provider: ProviderId | str | None) -> str | None:
    """Public Delay Repay page for a provider, used as the email call to action."""
    try:
        config = PORTALS.get(ProviderId(provider))
    except ValueError:
        return None
    return config.portal_url if config else None
