"""Page setup for the direct page crawlers"""

from __future__ import annotations

from playwright.async_api import Page, Route

from src.core.config import settings

BLOCKED_RESOURCE_TYPES = {"image", "media", "font", "stylesheet"}


async def _skip_heavy_resources(route: Route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


async def configure_page(page: Page) -> Page:
    """Default timeout plus resource blocking (the crawlers only need markup)"""
    page.set_default_timeout(settings.crawler_timeout)
    await page.route("**/*", _skip_heavy_resources)
    return page
