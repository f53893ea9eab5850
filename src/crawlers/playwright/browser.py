"""Shared Playwright browser for the direct page crawlers

One browser and one context per process. Launch retries with a linear
backoff, and shutdown is called from the app lifespan.
"""

from __future__ import annotations

import asyncio
import platform
from typing import Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright

from src.core.config import settings
from src.core.logging import logger
from src.core.exceptions import BrowserException


_shared_lock = asyncio.Lock()
_shared_playwright: Optional[Playwright] = None
_shared_browser: Optional[Browser] = None
_shared_context: Optional[BrowserContext] = None


def build_launch_args() -> list[str]:
    args = [
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-background-networking",
        "--disable-extensions",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-blink-features=AutomationControlled",
    ]
    if platform.system().lower() == "linux":
        args.extend(["--no-sandbox", "--disable-setuid-sandbox"])
    return args


async def _close_shared() -> None:
    """Tear down whatever part of the shared browser exists (lock held)"""
    global _shared_playwright, _shared_browser, _shared_context

    for name, closer in (
        ("context", _shared_context.close if _shared_context is not None else None),
        ("browser", _shared_browser.close if _shared_browser is not None else None),
        ("playwright", _shared_playwright.stop if _shared_playwright is not None else None),
    ):
        if closer is None:
            continue
        try:
            await closer()
        except Exception as e:
            logger.debug(f"[PLAYWRIGHT] {name} close failed: {e}")

    _shared_context = None
    _shared_browser = None
    _shared_playwright = None


async def ensure_shared_browser() -> tuple[Playwright, Browser, BrowserContext]:
    """Return the live shared browser, launching it if needed

    Raises:
        BrowserException: every launch attempt failed
    """
    global _shared_playwright, _shared_browser, _shared_context

    async with _shared_lock:
        if _shared_browser is not None and _shared_context is not None and _shared_browser.is_connected():
            return _shared_playwright, _shared_browser, _shared_context

        await _close_shared()

        attempts = max(1, settings.crawler_max_retries)
        last_err: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                logger.info(f"[PLAYWRIGHT] Launching browser (attempt {attempt}/{attempts})")
                pw = await asyncio.wait_for(async_playwright().start(), timeout=20.0)
                _shared_playwright = pw
                browser = await asyncio.wait_for(
                    pw.chromium.launch(
                        headless=True,
                        args=build_launch_args(),
                        timeout=settings.crawler_timeout,
                    ),
                    timeout=25.0,
                )
                _shared_browser = browser
                _shared_context = await browser.new_context(
                    user_agent=settings.crawler_user_agent,
                    locale="en-US",
                    viewport={"width": 1920, "height": 1080},
                    extra_http_headers={
                        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                        "Accept-Language": "en-US,en;q=0.9",
                    },
                )
                logger.info("[PLAYWRIGHT] Browser launched (shared)")
                return _shared_playwright, _shared_browser, _shared_context
            except Exception as e:
                last_err = e
                logger.error(f"[PLAYWRIGHT] Launch failed (attempt {attempt}/{attempts}): {type(e).__name__}: {e}")
                await _close_shared()
                if attempt < attempts:
                    await asyncio.sleep(min(2.0 * attempt, 10.0))

        raise BrowserException(f"Browser launch failed after {attempts} attempts: {last_err}")


async def shutdown_shared_browser() -> None:
    async with _shared_lock:
        await _close_shared()


async def new_page() -> Page:
    _pw, _browser, context = await ensure_shared_browser()
    return await context.new_page()
