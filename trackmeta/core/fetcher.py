"""
Source fetching and optional stem separation capabilities.

HttpFetcher downloads audio bytes with a streaming size cap. Anything
with an async ``fetch(url) -> bytes`` can stand in for it.
"""

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

from trackmeta.core.models import StemSet
from trackmeta.utils.errors import AnalysisError, AnalysisErrorCode

DEFAULT_TIMEOUT = 60.0  # seconds
DEFAULT_MAX_BYTES = 50 * 1024 * 1024
CHUNK_SIZE = 64 * 1024


class Fetcher(Protocol):
    """Capability interface for downloading a source."""

    async def fetch(self, url: str) -> bytes:
        ...


class StemSeparator(Protocol):
    """Capability interface for optional stem separation."""

    async def separate(self, url: str) -> StemSet:
        ...


class HttpFetcher:
    """
    Downloads sources over HTTP(S) with httpx.

    Each fetch opens and closes its own ``httpx.AsyncClient``, so one
    fetcher can serve calls made from different event loops. Errors are
    mapped onto the download family of AnalysisErrorCode: status and
    transport failures are DOWNLOAD_FAILED, timeouts are DOWNLOAD_TIMEOUT
    (both retryable) and oversize bodies are DOWNLOAD_TOO_LARGE.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.transport = transport
        self.logger = logging.getLogger('fetcher')

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    async def fetch(self, url: str) -> bytes:
        """
        Download ``url`` into memory.

        Raises:
            AnalysisError: DOWNLOAD_FAILED, DOWNLOAD_TIMEOUT or DOWNLOAD_TOO_LARGE
        """
        self.logger.info(f"Downloading audio: {url}")

        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()

                    declared = response.headers.get("content-length")
                    if declared is not None and declared.isdigit() and int(declared) > self.max_bytes:
                        raise self._too_large(int(declared))

                    chunks = []
                    received = 0
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        received += len(chunk)
                        if received > self.max_bytes:
                            raise self._too_large(received)
                        chunks.append(chunk)

        except httpx.TimeoutException as e:
            raise AnalysisError(
                AnalysisErrorCode.DOWNLOAD_TIMEOUT,
                f"Download timed out after {self.timeout}s",
                {'url': url, 'original_error': str(e)},
            ) from e

        except httpx.HTTPStatusError as e:
            raise AnalysisError(
                AnalysisErrorCode.DOWNLOAD_FAILED,
                f"Download failed with HTTP {e.response.status_code}",
                {'url': url, 'status_code': e.response.status_code},
            ) from e

        except httpx.HTTPError as e:
            raise AnalysisError(
                AnalysisErrorCode.DOWNLOAD_FAILED,
                f"Download failed: {e}",
                {'url': url, 'original_error': str(e)},
            ) from e

        data = b"".join(chunks)
        self.logger.info(f"Downloaded {len(data)} bytes")
        return data

    def _too_large(self, size: int) -> AnalysisError:
        return AnalysisError(
            AnalysisErrorCode.DOWNLOAD_TOO_LARGE,
            f"Audio file too large: {size} bytes (max: {self.max_bytes})",
            {'size': size, 'max_size': self.max_bytes},
        )


def create_http_fetcher(config: Optional[Dict[str, Any]] = None) -> HttpFetcher:
    """
    Factory function to create HttpFetcher.

    Args:
        config: Full configuration dict (reads ``download`` and ``audio``)
    """
    if config is None:
        config = {}

    return HttpFetcher(
        timeout=config.get('download', {}).get('timeout', DEFAULT_TIMEOUT),
        max_bytes=config.get('audio', {}).get('max_file_size', DEFAULT_MAX_BYTES),
    )
