"""
HTTP client wrapper with retry logic and error handling.

Provides exponential backoff around JSON POST requests made by the
reasoning backend.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class HTTPClientError(Exception):
    """Custom HTTP client error with retry info"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_count: int = 0,
    ):
        self.message = message
        self.status_code = status_code
        self.retry_count = retry_count
        super().__init__(message)


class HTTPClientWrapper:
    """Wrapper for httpx with retry logic and comprehensive error handling"""

    def __init__(
        self,
        base_timeout: float = 600.0,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
        max_backoff: float = 32.0,
        backoff_multiplier: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_timeout = base_timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier
        self._transport = transport

    async def post(
        self,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """POST request with retry logic"""
        actual_timeout = timeout if timeout is not None else self.base_timeout
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(
                    timeout=actual_timeout, transport=self._transport
                ) as client:
                    response = await client.post(url=url, json=json, headers=headers)
                    if response.status_code == 401:
                        raise HTTPClientError(
                            "Authentication failed: Invalid or expired API key",
                            status_code=401,
                            retry_count=attempt + 1,
                        )
                    response.raise_for_status()
                    return response

            except httpx.TimeoutException as e:
                last_error = e
                await self._backoff_or_give_up(attempt, f"Timeout: {url}")

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                last_error = e
                if status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                    await self._backoff_or_give_up(attempt, f"HTTP {status_code}: {url}")
                else:
                    raise HTTPClientError(
                        f"HTTP error {status_code}: {e}",
                        status_code=status_code,
                        retry_count=attempt + 1,
                    ) from e

            except httpx.RequestError as e:
                last_error = e
                await self._backoff_or_give_up(attempt, f"Request error: {url}")

        raise HTTPClientError(
            f"Failed after {self.max_retries + 1} attempts: {last_error}",
            retry_count=self.max_retries,
        )

    async def _backoff_or_give_up(self, attempt: int, what: str) -> None:
        if attempt >= self.max_retries:
            return
        backoff = self._calculate_backoff(attempt)
        logger.warning(
            f"{what} on attempt {attempt + 1}/{self.max_retries + 1}. Retrying in {backoff}s..."
        )
        await asyncio.sleep(backoff)

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff delay"""
        backoff = min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )
        return float(backoff)
