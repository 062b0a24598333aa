"""Tests for retry and timeout helpers."""

import asyncio

import pytest

from trackmeta.utils.errors import AnalysisError, AnalysisErrorCode
from trackmeta.utils.resilience import default_should_retry, with_retry, with_timeout


class Flaky:
    """Fails ``failures`` times with ``error`` then returns "ok"."""

    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestShouldRetry:
    def test_retryable_analysis_error(self):
        assert default_should_retry(AnalysisError(AnalysisErrorCode.DOWNLOAD_TIMEOUT, "x"))

    def test_non_retryable_analysis_error(self):
        assert not default_should_retry(AnalysisError(AnalysisErrorCode.DOWNLOAD_TOO_LARGE, "x"))

    def test_unknown_errors_are_retried(self):
        assert default_should_retry(RuntimeError("?"))


class TestWithRetry:
    def test_succeeds_after_retries(self):
        op = Flaky(2, AnalysisError(AnalysisErrorCode.DOWNLOAD_FAILED, "net"))
        retries = []
        result = asyncio.run(with_retry(
            op, max_attempts=3, base_delay=0.001,
            on_retry=lambda attempt, e: retries.append(attempt),
        ))
        assert result == "ok"
        assert op.calls == 3
        assert retries == [1, 2]

    def test_gives_up_after_budget(self):
        op = Flaky(5, AnalysisError(AnalysisErrorCode.DOWNLOAD_FAILED, "net"))
        with pytest.raises(AnalysisError):
            asyncio.run(with_retry(op, max_attempts=3, base_delay=0.001))
        assert op.calls == 3

    def test_non_retryable_fails_immediately(self):
        op = Flaky(5, AnalysisError(AnalysisErrorCode.DOWNLOAD_TOO_LARGE, "big"))
        with pytest.raises(AnalysisError):
            asyncio.run(with_retry(op, max_attempts=3, base_delay=0.001))
        assert op.calls == 1

    def test_exponential_backoff(self, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr(asyncio, "sleep", fake_sleep)
        op = Flaky(3, RuntimeError("flaky"))
        asyncio.run(with_retry(op, max_attempts=4, base_delay=1.0))
        assert delays == [1.0, 2.0, 4.0]


class TestWithTimeout:
    def test_returns_result(self):
        async def quick():
            return 42

        assert asyncio.run(with_timeout(quick(), 1.0, lambda: RuntimeError())) == 42

    def test_raises_custom_error(self):
        async def slow():
            await asyncio.sleep(10)

        def error():
            return AnalysisError(AnalysisErrorCode.ANALYSIS_TIMEOUT, "slow")

        with pytest.raises(AnalysisError) as exc_info:
            asyncio.run(with_timeout(slow(), 0.01, error))
        assert exc_info.value.code == AnalysisErrorCode.ANALYSIS_TIMEOUT
