"""Per-operator Delay Repay portal configuration."""

import re

from app.services.providers.base import ProviderId
from app.services.providers.portal import PortalConfig

PORTALS: dict[ProviderId, PortalConfig] = {
    ProviderId.AVANTI: PortalConfig(
        provider_id=ProviderId.AVANTI,
        portal_url="https://www.avantiwestcoast.co.uk/help-and-support/delay-repay",
        entry_selectors=(
            'a:has-text("Delay Repay")',
            'a:has-text("Start")',
            'a[href*="delay-repay"]',
        ),
    ),
    ProviderId.GWR: PortalConfig(
        provider_id=ProviderId.GWR,
        portal_url="https://delayrepay.gwr.com/",
        entry_selectors=('button:has-text("Continue as Guest")',),
    ),
    ProviderId.LNER: PortalConfig(
        provider_id=ProviderId.LNER,
        portal_url="https://delayrepay.lner.co.uk/",
        entry_selectors=('a:has-text("Make a claim")',),
    ),
    ProviderId.GTR: PortalConfig(
        provider_id=ProviderId.GTR,
        portal_url="https://delayrepay.southernrailway.com/",
        entry_selectors=('a:has-text("Make a claim")', 'a:has-text("Start")'),
    ),
    ProviderId.WMT: PortalConfig(
        provider_id=ProviderId.WMT,
        portal_url="https://delayrepay.londonnorthwesternrailway.co.uk/en/login",
        entry_selectors=('a:has-text("Start")', 'a:has-text("Delay Repay")'),
        confirmation_pattern=re.compile(
            r"(thank you|claim (?:has been )?(?:submitted|received)|we have received)",
            re.IGNORECASE,
        ),
    ),
}
