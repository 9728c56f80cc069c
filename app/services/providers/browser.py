"""
Playwright session helpers shared by every portal adapter.

Sessions are process-local and never shared between submissions.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, async_playwright

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CONSENT_SELECTORS = (
    "#truste-consent-button",
    ".truste_button_accept",
    "a.truste_button_2",
    "#onetrust-accept-btn-handler",
    'button[title="Accept All"]',
    'button:has-text("Accept All")',
    'button:has-text("Accept")',
    'button:has-text("Agree")',
)

CONSENT_OVERLAYS = (
    ".truste_cm_outerdiv",
    ".truste_box_overlay_border",
    "#onetrust-banner-sdk",
    ".ot-sdk-container",
)


@asynccontextmanager
async def browser_session(headless: bool | None = None) -> AsyncIterator[Page]:
    """Launch Chromium, yield a fresh page and always close the browser."""
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=settings.BROWSER_HEADLESS if headless is None else headless
        )
        try:
            context = await browser.new_context(locale="en-GB", timezone_id="Europe/London")
            context.set_default_timeout(settings.BROWSER_ACTION_TIMEOUT_MS)
            context.set_default_navigation_timeout(settings.BROWSER_NAVIGATION_TIMEOUT_MS)
            yield await context.new_page()
        finally:
            await browser.close()


async def dismiss_consent(page: Page) -> bool:
    """Click the first visible cookie banner button, then strip known overlays."""
    clicked = False
    for selector in CONSENT_SELECTORS:
        locator = page.locator(selector)
        try:
            if await locator.count():
                await locator.first.click(timeout=3000)
                await page.wait_for_timeout(300)
                clicked = True
                break
        except PlaywrightError as e:
            logger.debug("Consent button click failed", selector=selector, error=str(e))

    script = "sels => sels.forEach(q => document.querySelectorAll(q).forEach(n => n.remove()))"
    try:
        await page.evaluate(script, list(CONSENT_OVERLAYS))
    except PlaywrightError as e:
        logger.debug("Consent overlay removal failed", error=str(e))

    return clicked


async def fill_first(page: Page, selectors: tuple[str, ...], value: str | None) -> bool:
    """Fill the first matching field; returns False when none is on the page."""
    if value is None:
        return False
    for selector in selectors:
        locator = page.locator(selector)
        if await locator.count():
            await locator.first.fill(str(value))
            return True
    return False


async def click_first(page: Page, selectors: tuple[str, ...]) -> bool:
    for selector in selectors:
        locator = page.locator(selector)
        if await locator.count():
            await locator.first.click()
            return True
    return False


async def capture(page: Page, name: str) -> str | None:
    """Full-page screenshot into BROWSER_SCREENSHOT_DIR, if configured."""
    if not settings.BROWSER_SCREENSHOT_DIR:
        return None
    directory = Path(settings.BROWSER_SCREENSHOT_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.png"
    try:
        await page.screenshot(path=str(path), full_page=True)
    except PlaywrightError as e:
        logger.warning("Screenshot failed", path=str(path), error=str(e))
        return None
    return str(path)
