"""Shared browser utilities for the login flow."""

import os

from playwright.async_api import async_playwright

from .config import get_setting
from .log import log

# Chrome args to avoid Google's automation detection on the login page
STEALTH_ARGS = [
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=AutomationControlled",
    "--disable-dev-shm-usage",
]

# Stealth script to remove webdriver flag (minimal to avoid triggering more challenges)
STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""


def get_profile_dir() -> str:
    return os.path.join(get_setting("data_dir"), "profiles", "chromium-gemini")


def default_viewport() -> dict:
    return {"width": int(get_setting("viewport_width")), "height": int(get_setting("viewport_height"))}


async def launch_browser(viewport: dict | None = None, headless: bool | None = None, purpose: str | None = None):
    """Launch Chromium with the persistent profile, or attach to an existing one.

    When ``cdp_url`` is configured the browser is attached over CDP and is
    left running on close; only the page we opened is closed.

    Returns (playwright, browser, context, page). ``browser`` is None for the
    persistent profile. Caller must pass all four to ``close_browser``.
    """
    headless = headless if headless is not None else bool(get_setting("headless", True))
    vp = viewport or default_viewport()
    cdp_url = get_setting("cdp_url")
    purpose_str = f" [{purpose}]" if purpose else ""

    playwright = await async_playwright().start()
    try:
        if cdp_url:
            log(f"Attaching to Chromium at {cdp_url}{purpose_str}...", "◈")
            browser = await playwright.chromium.connect_over_cdp(cdp_url)
            context = browser.contexts[0] if browser.contexts else await browser.new_context(viewport=vp)
            page = await context.new_page()
            await page.set_viewport_size(vp)
        else:
            profile_dir = get_profile_dir()
            os.makedirs(profile_dir, exist_ok=True)
            headed_str = ", headed" if not headless else ""
            log(f"Launching Chromium{purpose_str} ({vp['width']}x{vp['height']}{headed_str})...", "◈")
            browser = None
            context = await playwright.chromium.launch_persistent_context(
                profile_dir,
                headless=headless,
                viewport=vp,  # type: ignore[arg-type]
                args=STEALTH_ARGS,
                timeout=15000,
            )
            page = context.pages[0] if context.pages else await context.new_page()
    except Exception:
        await playwright.stop()
        raise

    await page.add_init_script(STEALTH_SCRIPT)
    return playwright, browser, context, page


async def close_browser(playwright, browser=None, context=None, page=None):
    """Clean up browser resources."""
    if browser is not None:
        # Attached over CDP: leave the user's browser running
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                log(f"Warning closing page: {e}", "⚠")
    elif context is not None:
        try:
            await context.close()
        except Exception as e:
            log(f"Warning closing context: {e}", "⚠")

    if playwright is not None:
        try:
            await playwright.stop()
        except Exception as e:
            log(f"Warning stopping playwright: {e}", "⚠")
