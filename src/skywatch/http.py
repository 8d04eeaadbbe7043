"""Shared async HTTP plumbing for all upstream providers."""

import asyncio
import typing

import httpx
import structlog

from skywatch import __version__
from skywatch.config import Settings
from skywatch.errors import UpstreamError

logger = structlog.get_logger("Http")

USER_AGENT = f"skywatch/{__version__}"


def build_client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """Client used by every provider; the timeout bounds each individual call."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout),
        headers={"User-Agent": USER_AGENT},
        transport=transport,
        follow_redirects=True,
    )


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    provider: str,
    params: typing.Mapping[str, typing.Any] | None = None,
    headers: typing.Mapping[str, str] | None = None,
    retries: int = 0,
    backoff: float = 0.25,
) -> typing.Any:
    """
    GET ``url`` and decode JSON.

    Network-level failures (connect errors, timeouts) are retried up to
    ``retries`` times with exponential backoff. HTTP error statuses and other
    request errors are not retried. All of them end in ``UpstreamError``.
    """
    attempt = 0
    while True:
        try:
            response = await client.get(url, params=params, headers=headers)
            break
        except httpx.TransportError as e:
            if attempt >= retries:
                logger.warning("Upstream unreachable", provider=provider, url=url, attempts=attempt + 1, error=str(e))
                raise UpstreamError(provider, None, type(e).__name__) from e
            delay = backoff * (2**attempt)
            attempt += 1
            logger.info("Retrying upstream call", provider=provider, attempt=attempt, delay=delay, error=str(e))
            await asyncio.sleep(delay)
        except httpx.RequestError as e:
            # Redirect loops and undecodable bodies will not improve on retry
            logger.warning("Upstream request failed", provider=provider, url=url, error=str(e))
            raise UpstreamError(provider, None, type(e).__name__) from e

    if response.is_error:
        logger.warning("Upstream error status", provider=provider, status=response.status_code)
        raise UpstreamError(provider, response.status_code, response.text)

    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError(provider, response.status_code, "Invalid JSON response") from e
