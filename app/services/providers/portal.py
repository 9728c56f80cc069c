"""
Shared Delay Repay portal flow.

Operators differ only by URL, selectors and the text that proves a claim
was accepted, so one adapter class is configured per operator.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from app.infrastructure.observability.logging import get_logger
from app.services.providers.base import (
    ProviderId,
    SubmissionAdapter,
    SubmissionPayload,
    SubmissionResult,
)
from app.services.providers.browser import (
    browser_session,
    capture,
    click_first,
    dismiss_consent,
    fill_first,
)

logger = get_logger(__name__)

EMAIL_SELECTORS = ('input[type="email"]', 'input[name*="email" i]')
BOOKING_SELECTORS = (
    'input[name*="booking" i]',
    'input[name*="reference" i]',
    'input[name*="ref" i]',
)
JOURNEY_SELECTORS = ("textarea", '[name*="journey" i]')
SUBMIT_SELECTORS = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Submit")',
)

DEFAULT_CONFIRMATION = re.compile(
    r"(thank you|claim (?:has been )?(?:submitted|received))", re.IGNORECASE
)
DEFAULT_REFERENCE = re.compile(
    r"(?:claim|reference)\s*(?:number|no\.?|ref(?:erence)?)?\s*[:#]?\s*(?P<ref>[A-Z0-9][A-Z0-9-]{4,})",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class PortalConfig:
    provider_id: ProviderId
    portal_url: str
    entry_selectors: tuple[str, ...] = ()
    confirmation_pattern: re.Pattern = DEFAULT_CONFIRMATION
    reference_pattern: re.Pattern = DEFAULT_REFERENCE


def parse_confirmation(text: str, config: PortalConfig) -> tuple[bool, str | None]:
    """Return (confirmed, provider_ref) from the page text after submitting."""
    if not text or not config.confirmation_pattern.search(text):
        return False, None
    match = config.reference_pattern.search(text)
    return True, match.group("ref") if match else None


def journey_notes(payload: SubmissionPayload) -> str:
    def fmt(value: datetime | None) -> str:
        return value.strftime("%d/%m/%Y %H:%M") if value else "N/A"

    return (
        f"{payload.origin or '?'} to {payload.destination or '?'}\n"
        f"Depart: {fmt(payload.depart_planned)}\n"
        f"Arrive: {fmt(payload.arrive_planned)}\n"
        f"Delay: {payload.delay_minutes} min (band {payload.delay_band})"
    )


class PortalSubmissionAdapter(SubmissionAdapter):
    """Drives one operator's public claim form through Playwright."""

    def __init__(self, config: PortalConfig):
        self.config = config
        self.provider_id = config.provider_id

    async def submit(self, payload: SubmissionPayload, *, live: bool) -> SubmissionResult:
        refused = self.precheck(payload)
        if refused:
            logger.warning(
                "Submission refused", claim_id=payload.claim_id, provider=self.provider_id.value,
                error=refused.error,
            )
            return refused

        provider = self.provider_id.value
        try:
            async with browser_session() as page:
                return await self._run(page, payload, live)
        except PlaywrightError as e:
            logger.warning(
                "Portal automation failed", claim_id=payload.claim_id, provider=provider, error=str(e)
            )
            return SubmissionResult(ok=False, provider=provider, live=live, error=str(e)[:500])

    async def _run(self, page: Page, payload: SubmissionPayload, live: bool) -> SubmissionResult:
        provider = self.provider_id.value
        await page.goto(self.config.portal_url, wait_until="domcontentloaded")
        await dismiss_consent(page)

        if self.config.entry_selectors and await click_first(page, self.config.entry_selectors):
            await page.wait_for_load_state("domcontentloaded")
            await dismiss_consent(page)

        filled = {
            "email": await fill_first(page, EMAIL_SELECTORS, payload.user_email),
            "booking_ref": await fill_first(page, BOOKING_SELECTORS, payload.booking_ref),
            "journey": await fill_first(page, JOURNEY_SELECTORS, journey_notes(payload)),
        }
        raw = {
            "portal_url": self.config.portal_url,
            "filled": filled,
            "delay_band": payload.delay_band,
            "screenshot_before": await capture(page, f"{provider}_{payload.claim_id}_before"),
        }

        if not live:
            logger.info("Dry run completed", claim_id=payload.claim_id, provider=provider, filled=filled)
            return SubmissionResult(ok=True, provider=provider, live=False, raw=raw)

        if not await click_first(page, SUBMIT_SELECTORS):
            return SubmissionResult(
                ok=False, provider=provider, live=True, error="submit_button_not_found", raw=raw
            )
        await page.wait_for_load_state("networkidle")
        raw["screenshot_after"] = await capture(page, f"{provider}_{payload.claim_id}_after")

        confirmed, provider_ref = parse_confirmation(await page.inner_text("body"), self.config)
        if not confirmed:
            return SubmissionResult(
                ok=False, provider=provider, live=True, error="confirmation_not_detected", raw=raw
            )

        return SubmissionResult(
            ok=True,
            provider=provider,
            live=True,
            confirmed=True,
            submitted_at=datetime.now(UTC),
            provider_ref=provider_ref,
            raw=raw,
        )
