"""HTTP client with retry and timeout support for site sources."""

from __future__ import annotations

import asyncio
import ssl
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx

from .logging_config import get_logger
from .models import ClientConfig, PhaseStats, RetryPolicy

logger = get_logger("http_client")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

RETRYABLE_STATUSES = {408, 409, 425, 429}


def legacy_tls_context() -> ssl.SSLContext:
    """SSL context that still negotiates TLSv1 for old government hosts."""
    context = ssl.create_default_context()
    context.minimum_version = ssl.TLSVersion.TLSv1
    context.set_ciphers("DEFAULT:@SECLEVEL=0")
    return context


class HTTPClient:
    """httpx wrapper with retry logic, timeout, and exponential backoff."""

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        self.config = config or ClientConfig(name="default")
        self.timeout = httpx.Timeout(
            connect=10.0,
            read=self.config.timeout_seconds,
            write=10.0,
            pool=5.0,
        )
        self.headers = {
            "User-Agent": DEFAULT_USER_AGENT,
            **self.config.headers,
        }
        self.verify: Union[bool, ssl.SSLContext] = (
            legacy_tls_context() if self.config.legacy_tls else True
        )

    @property
    def retry(self) -> RetryPolicy:
        return self.config.retry

    def _client(self, follow_redirects: bool = True) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=follow_redirects,
            verify=self.verify,
        )

    async def get_async(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        stats: Optional[PhaseStats] = None,
    ) -> httpx.Response:
        return await self.request_async("GET", url, headers=headers, params=params, stats=stats)

    async def post_form_async(
        self,
        url: str,
        data: Dict[str, Any],
        *,
        headers: Optional[Dict[str, str]] = None,
        stats: Optional[PhaseStats] = None,
    ) -> httpx.Response:
        form_headers = {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            **(headers or {}),
        }
        return await self.request_async("POST", url, headers=form_headers, data=data, stats=stats)

    async def request_async(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
        json: Optional[Any] = None,
        follow_redirects: bool = True,
        stats: Optional[PhaseStats] = None,
    ) -> httpx.Response:
        merged_headers = {**self.headers, **(headers or {})}
        max_attempts = self.retry.max_attempts

        async with self._client(follow_redirects) as client:
            for attempt in range(1, max_attempts + 1):
                if stats:
                    stats.http_requests += 1
                try:
                    response = await client.request(
                        method,
                        url,
                        headers=merged_headers,
                        params=params,
                        data=data,
                        json=json,
                    )
                    response.raise_for_status()
                    return response

                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    if self._should_retry_status(status_code) and attempt < max_attempts:
                        await self._backoff(method, url, f"status {status_code}", attempt, stats)
                        continue

                    logger.error(
                        "Request %s %s failed with status %s: %s",
                        method,
                        url,
                        status_code,
                        exc,
                    )
                    raise

                except (httpx.RequestError, httpx.TimeoutException) as exc:
                    if attempt < max_attempts:
                        await self._backoff(method, url, str(exc) or type(exc).__name__, attempt, stats)
                        continue

                    logger.error(
                        "Request %s %s failed after %s attempts: %s",
                        method,
                        url,
                        attempt,
                        exc,
                    )
                    raise

        raise RuntimeError(f"Request {method} {url} failed after retries")

    async def download_async(
        self,
        url: str,
        destination: Path,
        *,
        headers: Optional[Dict[str, str]] = None,
        stats: Optional[PhaseStats] = None,
        chunk_size: int = 64 * 1024,
    ) -> int:
        """Stream ``url`` into ``destination`` and return the number of bytes written.

        Each attempt truncates the destination. The caller owns cleanup of a
        partially written file when this raises.
        """
        merged_headers = {**self.headers, **(headers or {})}
        max_attempts = self.retry.max_attempts

        async with self._client() as client:
            for attempt in range(1, max_attempts + 1):
                if stats:
                    stats.http_requests += 1
                try:
                    async with client.stream("GET", url, headers=merged_headers) as response:
                        response.raise_for_status()
                        written = 0
                        with open(destination, "wb") as handle:
                            async for chunk in response.aiter_bytes(chunk_size):
                                handle.write(chunk)
                                written += len(chunk)
                        return written

                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    if self._should_retry_status(status_code) and attempt < max_attempts:
                        await self._backoff("GET", url, f"status {status_code}", attempt, stats)
                        continue
                    raise

                except (httpx.RequestError, httpx.TimeoutException) as exc:
                    if attempt < max_attempts:
                        await self._backoff("GET", url, str(exc) or type(exc).__name__, attempt, stats)
                        continue
                    raise

        raise RuntimeError(f"Download {url} failed after retries")

    async def _backoff(
        self,
        method: str,
        url: str,
        reason: str,
        attempt: int,
        stats: Optional[PhaseStats],
    ) -> None:
        delay = self.retry.delay_for(attempt)
        if stats:
            stats.retry_attempts += 1
        logger.warning(
            "Request %s %s failed (%s). Retrying in %.2fs (attempt %s/%s)",
            method,
            url,
            reason,
            delay,
            attempt,
            self.retry.max_attempts,
        )
        await asyncio.sleep(delay)

    def _should_retry_status(self, status_code: int) -> bool:
        if status_code >= 500:
            return True
        return status_code in RETRYABLE_STATUSES
