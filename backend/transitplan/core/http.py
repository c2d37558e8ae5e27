"""Shared GET-with-retry for outbound feed and routing requests."""

import asyncio
import logging

import httpx

from transitplan.core.errors import UpstreamError

logger = logging.getLogger(__name__)

RETRY_BACKOFF = [2, 4, 8]  # seconds between retries


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    label: str,
    retries: int,
    params: dict | None = None,
) -> httpx.Response:
    """GET request with retry and exponential backoff.

    Timeouts, connection errors and 5xx responses are retried; anything else,
    or running out of attempts, raises UpstreamError.
    """
    for attempt in range(retries + 1):
        try:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            if attempt < retries:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %ds",
                    label, attempt + 1, retries + 1, type(e).__name__, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise UpstreamError(f"{label} failed after {retries + 1} attempts: {e}", source=label) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status >= 500 and attempt < retries:
                wait = RETRY_BACKOFF[min(attempt, len(RETRY_BACKOFF) - 1)]
                logger.warning(
                    "%s attempt %d/%d got HTTP %d, retrying in %ds",
                    label, attempt + 1, retries + 1, status, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise UpstreamError(f"{label} returned HTTP {status}", source=label) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{label} request failed: {e}", source=label) from e
    raise UpstreamError(f"{label} failed", source=label)
