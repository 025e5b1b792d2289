"""Async HTTP client with retries and request pacing, used for cover art."""

import asyncio
import time
from pathlib import Path
from typing import Any

import httpx
import structlog

log = structlog.stdlib.get_logger()

USER_AGENT = "romcat/0.1"


class HttpClientService:
    """HTTP client with exponential backoff, rate limiting, and timeout handling."""

    def __init__(
        self,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        rate_limit_delay: float = 0.1,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the HTTP client service.

        Args:
            timeout: Request timeout in seconds
            max_retries: Retry attempts after the first request
            base_delay: Base delay for exponential backoff in seconds
            max_delay: Maximum delay between retries in seconds
            rate_limit_delay: Minimum delay between requests in seconds
            transport: Custom transport (``httpx.MockTransport`` in tests)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.rate_limit_delay = rate_limit_delay
        self._last_request_time: float = 0.0

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            transport=transport,
        )

        log.debug(
            "HTTP client service initialized",
            timeout=timeout,
            max_retries=max_retries,
            rate_limit_delay=rate_limit_delay,
        )

    async def download_file(
        self,
        url: str,
        path: Path,
        headers: dict[str, str] | None = None,
        chunk_size: int = 8192,
    ) -> int:
        """Stream ``url`` into ``path`` with retries.

        Data is written to ``<path>.part`` and moved into place only when
        complete, so a failed attempt never clobbers an existing file.

        Returns:
            Number of bytes written

        Raises:
            httpx.HTTPStatusError: On a client error such as 404 (not retried) or when
                server errors persist through every retry
            httpx.RequestError: If every attempt fails at the transport level
            OSError: If the file cannot be written (not retried)
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(path.name + ".part")

        for attempt in range(self.max_retries + 1):
            await self._enforce_rate_limit()
            try:
                async with self._client.stream("GET", url, headers=headers) as response:
                    response.raise_for_status()
                    expected = int(response.headers.get("content-length", 0))
                    written = 0
                    with open(partial, "wb") as f:
                        async for chunk in response.aiter_bytes(chunk_size):
                            f.write(chunk)
                            written += len(chunk)

                if expected > 0 and written != expected:
                    raise httpx.RequestError(f"File size mismatch: expected {expected}, got {written}")

                partial.replace(path)
                log.debug("File downloaded", url=url, path=str(path), size=written)
                return written

            except (httpx.HTTPStatusError, httpx.RequestError, OSError) as e:
                self._remove_partial(partial)
                if isinstance(e, OSError):
                    log.error("Cannot write download", path=str(path), error=str(e))
                    raise
                delay = self._retry_delay(e, attempt, url)
                if delay is None:
                    raise
                await asyncio.sleep(delay)

        raise RuntimeError("Unexpected end of retry loop")

    def _retry_delay(self, error: httpx.HTTPError, attempt: int, url: str) -> float | None:
        """Seconds to wait before the next attempt, or None to give up."""
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == 429:
                retry_after = error.response.headers.get("retry-after")
                try:
                    if retry_after is not None and attempt < self.max_retries:
                        return min(float(retry_after), self.max_delay)
                except ValueError:
                    pass
            elif 400 <= status < 500:
                log.debug("Client error, not retrying", url=url, status_code=status)
                return None

        if attempt >= self.max_retries:
            log.warning("HTTP request failed after all retries", url=url, attempts=attempt + 1, error=str(error))
            return None

        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        log.info("Retrying after delay", url=url, delay=delay, error_type=type(error).__name__)
        return delay

    @staticmethod
    def _remove_partial(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            log.warning("Failed to clean up partial download", path=str(path))

    async def _enforce_rate_limit(self) -> None:
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < self.rate_limit_delay:
            await asyncio.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = time.monotonic()

    async def close(self) -> None:
        await self._client.aclose()
        log.debug("HTTP client closed")

    async def __aenter__(self) -> "HttpClientService":
        return self

    async def __aexit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        await self.close()
