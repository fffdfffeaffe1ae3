"""
HTTP request helper shared by the source adapters.

Wraps a single provider call with the retry policy every adapter follows:

- wait on the source's rate limiter before each attempt
- 404 returns None
- 401 triggers one re-authentication and one retry (authenticated sources)
- 429 sleeps for ``Retry-After`` and retries once, then raises RateLimitedError
- timeouts and connection errors retry once, then raise TransientNetworkError
"""
import asyncio
from collections.abc import Awaitable, Callable
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from collector_nexus.core.exceptions import (
    AuthenticationError,
    ProviderError,
    RateLimitedError,
    TransientNetworkError,
)
from collector_nexus.services.sources.rate_limit import RateLimiter

logger = structlog.get_logger()

DEFAULT_RETRY_AFTER = 60.0
MAX_RETRY_AFTER = 60.0


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER) -> float:
    """
    Parse a ``Retry-After`` header given in seconds or as an HTTP date.

    The result is capped at ``MAX_RETRY_AFTER`` seconds.
    """
    if not value:
        return default
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return default
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    source_id: str,
    limiter: RateLimiter,
    auth_headers: Callable[[], Awaitable[dict[str, str]]] | None = None,
    reauthenticate: Callable[[], Awaitable[None]] | None = None,
    on_response: Callable[[httpx.Response], None] | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response | None:
    """
    Issue one logical request against a provider.

    Args:
        client: HTTP client bound to the provider.
        method: HTTP method.
        url: Path or absolute URL.
        source_id: Id of the calling source, attached to every error.
        limiter: The source's rate limiter.
        auth_headers: Returns the headers carrying the current credentials.
        reauthenticate: Forces a fresh token; enables the 401 retry.
        on_response: Called with every response, e.g. to read rate-limit headers.
        timeout: Per-request timeout override in seconds.
        sleep: Coroutine used for Retry-After waits.
        **kwargs: Passed through to ``client.request``.

    Returns:
        The successful response, or None if the provider answered 404.
    """
    extra_headers = kwargs.pop("headers", None) or {}
    if timeout is not None:
        kwargs["timeout"] = httpx.Timeout(timeout)

    reauthenticated = False
    rate_limit_retried = False
    network_retried = False

    while True:
        await limiter.acquire()
        headers = dict(extra_headers)
        if auth_headers is not None:
            headers.update(await auth_headers())

        try:
            response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            if not network_retried:
                network_retried = True
                logger.warning(
                    "Provider request failed, retrying once",
                    source=source_id,
                    url=url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            logger.error("Provider request failed", source=source_id, url=url, error=str(e))
            raise TransientNetworkError(source_id, f"{type(e).__name__}: {e}") from e

        if on_response is not None:
            on_response(response)

        status = response.status_code
        if status == 404:
            return None

        if status == 401:
            if reauthenticate is not None and not reauthenticated:
                reauthenticated = True
                logger.info("Provider rejected token, re-authenticating", source=source_id)
                await reauthenticate()
                continue
            raise AuthenticationError(source_id, "Credentials rejected", status_code=status)

        if status == 403:
            raise AuthenticationError(source_id, "Access forbidden", status_code=status)

        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if not rate_limit_retried:
                rate_limit_retried = True
                logger.warning(
                    "Provider rate limited, waiting",
                    source=source_id,
                    retry_after=retry_after,
                )
                await sleep(retry_after)
                continue
            raise RateLimitedError(
                source_id,
                f"Rate limit exceeded. Retry after {retry_after} seconds.",
                status_code=status,
                retry_after=retry_after,
            )

        if status >= 400:
            logger.error(
                "Provider API error",
                source=source_id,
                status_code=status,
                url=url,
                error=response.text[:200],
            )
            raise ProviderError(
                source_id,
                f"HTTP {status}: {response.text[:200]}",
                status_code=status,
                retryable=status >= 500,
            )

        return response


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any | None:
    """``send_request`` that decodes the JSON body. 404 returns None."""
    response = await send_request(client, method, url, **kwargs)
    if response is None:
        return None
    return decode_json(response, kwargs["source_id"])


def decode_json(response: httpx.Response, source_id: str) -> Any:
    """
    JSON body of a provider response.

    Raises:
        ProviderError: The body is not valid JSON.
    """
    try:
        return response.json()
    except ValueError as e:
        logger.error("Invalid JSON from provider", source=source_id, url=str(response.request.url))
        raise ProviderError(source_id, f"Invalid JSON from {response.request.url}") from e
