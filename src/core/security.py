"""
Request security helpers
- search query screening
- client identification behind proxies
- bearer verification for the batch trigger
"""

import hmac
from typing import Optional
from fastapi import Request
from src.core.logging import logger, sanitize_for_log


class SecurityValidator:
    """Input screening"""

    MAX_QUERY_LENGTH = 100

    # control characters and markup never belong in a search term
    DANGEROUS_CHARS = ['<', '>', '\\', '\0', '\n', '\r']

    @staticmethod
    def validate_query(query: str) -> str:
        """Validate a search term

        Args:
            query: raw search term

        Returns:
            stripped search term

        Raises:
            ValueError: empty, too long, or containing forbidden characters
        """
        if query is None or not query.strip():
            raise ValueError("query is required")

        query = query.strip()
        if len(query) > SecurityValidator.MAX_QUERY_LENGTH:
            raise ValueError(f"query must be at most {SecurityValidator.MAX_QUERY_LENGTH} characters")

        for char in SecurityValidator.DANGEROUS_CHARS:
            if char in query:
                logger.warning(f"[SECURITY] Forbidden character in query: {sanitize_for_log(repr(char))}")
                raise ValueError("query contains forbidden characters")

        return query

    @staticmethod
    def verify_bearer(authorization: Optional[str], secret: str) -> bool:
        """Check an Authorization header against a shared secret

        An empty secret disables the check.
        """
        if not secret:
            return True
        if not authorization:
            return False
        return hmac.compare_digest(authorization, f"Bearer {secret}")


def get_client_identifier(request: Request) -> str:
    """Best-effort client IP from proxy headers

    Order: x-forwarded-for (first hop), x-real-ip, cf-connecting-ip,
    socket peer, then "unknown".
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header)
        if value and value.strip():
            return value.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


async def log_request(request: Request) -> None:
    """Debug-log a request without sensitive query values"""
    method = request.method
    path = request.url.path

    query_params = {}
    for key, value in request.query_params.items():
        query_params[key] = sanitize_for_log(str(value), max_length=50)

    if query_params:
        logger.debug(f"{method} {path}?{query_params}")
    else:
        logger.debug(f"{method} {path}")
