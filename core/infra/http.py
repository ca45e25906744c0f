"""
http.py – Async JSON client built on *aiohttp* for the source collectors:
          per-request timeout, bounded retries with jittered back-off for
          429 / 5xx / network errors, and one place for default headers.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ..exceptions import FetchError

logger = logging.getLogger(__name__)

RETRY_FOR_STATUS = (429, 500, 502, 503, 504)


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession*.

    Retries stay short: the collector's next scheduled tick is the real retry,
    so a fetch gives up after ``max_retries`` attempts and raises
    :class:`~core.exceptions.FetchError`.
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = dict(default_headers or {})

    async def __aenter__(self) -> "HttpClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    @staticmethod
    def _parse_retry_after(header_val: Optional[str]) -> Optional[float]:
        """Seconds from a numeric Retry-After header; dates are ignored."""
        if not header_val:
            return None
        header_val = header_val.strip()
        if header_val.isdigit():
            return float(header_val)
        return None

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return exponential + random.uniform(0, self._base_delay)

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body, retrying transient failures."""
        session = await self._ensure_session()
        merged = {**self._default_headers, **(headers or {})}

        for attempt in range(1, self._max_retries + 1):
            retry_after: Optional[float] = None
            try:
                async with session.get(url, params=params, headers=merged) as resp:
                    if resp.status in RETRY_FOR_STATUS:
                        retry_after = self._parse_retry_after(resp.headers.get("Retry-After"))
                        raise aiohttp.ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                            message=f"retryable status {resp.status}",
                            headers=resp.headers,
                        )
                    resp.raise_for_status()
                    return await resp.json(content_type=None)
            except aiohttp.ClientResponseError as e:
                if e.status not in RETRY_FOR_STATUS:
                    raise FetchError(url, f"HTTP {e.status}") from e
                error: Exception = e
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                error = e

            if attempt == self._max_retries:
                logger.error("GET %s failed after %d attempts: %s", url, attempt, error)
                raise FetchError(url, str(error) or type(error).__name__) from error

            sleep_seconds = self._backoff(attempt, retry_after)
            logger.warning(
                "GET %s failed (attempt %d/%d, retrying in %.1fs): %s",
                url,
                attempt,
                self._max_retries,
                sleep_seconds,
                str(error).splitlines()[0] if str(error) else type(error).__name__,
            )
            await asyncio.sleep(sleep_seconds)

        raise RuntimeError("Unreachable retry loop")

