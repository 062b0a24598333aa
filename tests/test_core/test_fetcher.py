"""Tests for HttpFetcher using httpx's mock transport."""

import asyncio

import httpx
import pytest

from trackmeta.core.fetcher import HttpFetcher, create_http_fetcher
from trackmeta.utils.errors import AnalysisError, AnalysisErrorCode

URL = "https://audio.example.com/track.wav"


def fetch_with(handler, **kwargs) -> bytes:
    fetcher = HttpFetcher(transport=httpx.MockTransport(handler), **kwargs)
    return asyncio.run(fetcher.fetch(URL))


class TestHttpFetcher:
    def test_success(self):
        body = b"RIFF" + bytes(1000)
        assert fetch_with(lambda request: httpx.Response(200, content=body)) == body

    def test_http_error_status(self):
        with pytest.raises(AnalysisError) as exc_info:
            fetch_with(lambda request: httpx.Response(404))
        error = exc_info.value
        assert error.code == AnalysisErrorCode.DOWNLOAD_FAILED
        assert error.details['status_code'] == 404
        assert error.retryable

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(AnalysisError) as exc_info:
            fetch_with(handler)
        assert exc_info.value.code == AnalysisErrorCode.DOWNLOAD_TIMEOUT

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AnalysisError) as exc_info:
            fetch_with(handler)
        assert exc_info.value.code == AnalysisErrorCode.DOWNLOAD_FAILED

    def test_body_over_cap(self):
        with pytest.raises(AnalysisError) as exc_info:
            fetch_with(lambda request: httpx.Response(200, content=bytes(5000)), max_bytes=1000)
        error = exc_info.value
        assert error.code == AnalysisErrorCode.DOWNLOAD_TOO_LARGE
        assert not error.retryable


def test_factory_reads_download_and_audio_sections():
    fetcher = create_http_fetcher({'download': {'timeout': 5}, 'audio': {'max_file_size': 10}})
    assert fetcher.timeout == 5
    assert fetcher.max_bytes == 10


def test_fetcher_serves_separate_event_loops():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(200, content=b"RIFF" + bytes(100))

    fetcher = HttpFetcher(transport=httpx.MockTransport(handler))

    first = asyncio.run(fetcher.fetch(URL))
    second = asyncio.run(fetcher.fetch(URL))

    assert first == second
    assert len(calls) == 2
