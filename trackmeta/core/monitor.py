"""
Process memory monitor.

Samples resident memory on a fixed interval from a background asyncio
task and raises a flag when a ceiling is crossed. The monitor only
reports; the engine decides what to do at its checkpoints.
"""

import asyncio
import logging
from typing import Callable, Optional

import psutil

MemorySampler = Callable[[], float]


def process_memory_mb() -> float:
    """Resident set size of the current process in MB."""
    process = psutil.Process()
    return process.memory_info().rss / 1024 / 1024


class MemoryMonitor:
    """
    Background memory poller owned by one analysis call.

    Usage:
        monitor = MemoryMonitor(max_memory_mb=512)
        monitor.start()
        ...
        if monitor.exceeded: ...
        monitor.stop()
    """

    def __init__(
        self,
        max_memory_mb: float = 512,
        check_interval: float = 1.0,
        sampler: Optional[MemorySampler] = None,
    ):
        """
        Initialize monitor.

        Args:
            max_memory_mb: Ceiling in MB
            check_interval: Seconds between samples
            sampler: Callable returning current usage in MB (psutil RSS by default)
        """
        self.max_memory_mb = max_memory_mb
        self.check_interval = check_interval
        self.sampler = sampler or process_memory_mb
        self.logger = logging.getLogger('memory_monitor')

        self._task: Optional[asyncio.Task] = None
        self._exceeded_event: Optional[asyncio.Event] = None
        self._exceeded = False
        self._last_usage_mb = 0.0

    @property
    def exceeded(self) -> bool:
        """True once any sample crossed the ceiling."""
        return self._exceeded

    @property
    def last_usage_mb(self) -> float:
        return self._last_usage_mb

    def current_usage_mb(self) -> float:
        """Take a fresh sample without touching the exceeded flag."""
        try:
            return float(self.sampler())
        except Exception as e:
            self.logger.debug(f"Memory sample failed: {e}")
            return self._last_usage_mb

    def check(self) -> bool:
        """
        Take one sample and update the flag.

        Returns:
            bool: True if the ceiling has been crossed
        """
        usage = self.current_usage_mb()
        self._last_usage_mb = usage

        if usage > self.max_memory_mb and not self._exceeded:
            self._exceeded = True
            self.logger.warning(
                f"Memory limit exceeded: {usage:.1f}MB > {self.max_memory_mb}MB"
            )
            if self._exceeded_event is not None:
                self._exceeded_event.set()

        return self._exceeded

    def start(self) -> None:
        """Start sampling on the running event loop."""
        if self._task is not None:
            return

        self._exceeded_event = asyncio.Event()
        if self._exceeded:
            self._exceeded_event.set()
        self._task = asyncio.get_running_loop().create_task(self._run())
        self.logger.debug(
            f"Memory monitor started (limit {self.max_memory_mb}MB, every {self.check_interval}s)"
        )

    def stop(self) -> None:
        """Cancel the sampling task."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self.logger.debug("Memory monitor stopped")

    async def wait_exceeded(self) -> None:
        """Block until the ceiling is crossed. Requires start()."""
        if self._exceeded_event is None:
            raise RuntimeError("Memory monitor is not running")
        await self._exceeded_event.wait()

    async def _run(self) -> None:
        while True:
            if self.check():
                return
            await asyncio.sleep(self.check_interval)

    async def __aenter__(self) -> "MemoryMonitor":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()


def create_memory_monitor(config: Optional[dict] = None) -> MemoryMonitor:
    """
    Factory function to create MemoryMonitor from the ``memory`` section.
    """
    if config is None:
        config = {}

    return MemoryMonitor(
        max_memory_mb=config.get('max_mb', 512),
        check_interval=config.get('check_interval', 1.0),
    )
