"""Headless browser helpers for the direct page crawlers"""

from .browser import ensure_shared_browser, shutdown_shared_browser, new_page
from .pages import configure_page

__all__ = [
    "ensure_shared_browser",
    "shutdown_shared_browser",
    "new_page",
    "configure_page",
]
