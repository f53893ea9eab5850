"""Shared HTTP client (curl_cffi)

- One AsyncSession per process so crawl backends and the detail fetcher
  reuse TLS connections.
- Transport failures return None; callers decide whether to fall back.
- close() is called from the app lifespan.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Optional

from curl_cffi.requests import AsyncSession

from src.core.config import settings
from src.core.logging import logger


class SharedHttpClient:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._session: Optional[AsyncSession] = None

    async def _ensure_session(self) -> AsyncSession:
        async with self._lock:
            if self._session is not None:
                return self._session
            self._session = AsyncSession(
                impersonate=settings.crawler_http_impersonate,
                headers=self.default_headers(),
                allow_redirects=True,
                max_clients=settings.crawler_http_max_clients,
                trust_env=False,
            )
            return self._session

    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": settings.crawler_user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def get_text(
        self,
        url: str,
        *,
        timeout_s: float,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[tuple[int, str]]:
        sess = await self._ensure_session()
        try:
            resp = await sess.get(url, headers=headers, params=params, timeout=timeout_s)
            return resp.status_code or 0, resp.text or ""
        except Exception as e:
            logger.info(f"[HTTP_CLIENT] GET failed: {type(e).__name__}: {e!r}")
            return None

    async def get_json(
        self,
        url: str,
        *,
        timeout_s: float,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[tuple[int, Any]]:
        result = await self.get_text(
            url,
            timeout_s=timeout_s,
            params=params,
            headers={"Accept": "application/json"},
        )
        if result is None:
            return None
        status, text = result
        return status, _decode(url, text)

    async def post_json(
        self,
        url: str,
        payload: Any,
        *,
        timeout_s: float,
        params: Optional[Dict[str, Any]] = None,
    ) -> Optional[tuple[int, Any]]:
        sess = await self._ensure_session()
        try:
            resp = await sess.post(
                url,
                json=payload,
                params=params,
                timeout=timeout_s,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        except Exception as e:
            logger.info(f"[HTTP_CLIENT] POST failed: {type(e).__name__}: {e!r}")
            return None
        return resp.status_code or 0, _decode(url, resp.text or "")

    async def close(self) -> None:
        async with self._lock:
            if self._session is None:
                return
            try:
                await self._session.close()
            except Exception as e:
                logger.debug(f"[HTTP_CLIENT] close failed: {e}")
            self._session = None


def _decode(url: str, text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.info(f"[HTTP_CLIENT] Non-JSON body from {url[:80]}")
        return None
