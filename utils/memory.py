import asyncio
import gc
import logging

import psutil

LOGGER = logging.getLogger(__name__)

MAX_PAUSE_SECONDS = 1.0


class MemoryMonitor:
    """
    Advisory back-pressure for long scans.

    Before each page fetch the scanner asks for the next batch size. When the
    process RSS is above ``threshold`` of ``limit_mb`` the batch either shrinks
    (policy "shrink") or a gc pass plus a short pause happens (policy "pause").
    Nothing here changes which messages get processed.
    """

    def __init__(
        self,
        limit_mb: float | None,
        threshold: float = 0.8,
        policy: str = "shrink",
        min_batch_size: int = 10,
        shrink_factor: float = 0.5,
        pause_seconds: float = MAX_PAUSE_SECONDS,
    ):
        self.limit_mb = limit_mb
        self.threshold = threshold
        self.policy = policy
        self.min_batch_size = min_batch_size
        self.shrink_factor = shrink_factor
        self.pause_seconds = min(pause_seconds, MAX_PAUSE_SECONDS)
        self.process = psutil.Process()

    def usage_mb(self) -> float:
        return self.process.memory_info().rss / (1024 * 1024)

    def under_pressure(self, usage_mb: float | None = None) -> bool:
        if not self.limit_mb:
            return False
        if usage_mb is None:
            usage_mb = self.usage_mb()
        return usage_mb > self.limit_mb * self.threshold

    async def next_batch_size(self, batch_size: int) -> int:
        if not self.limit_mb:
            return batch_size
        usage = self.usage_mb()
        if not self.under_pressure(usage):
            return batch_size

        LOGGER.warning(f"Memory usage {usage:.0f}MB is above {self.threshold:.0%} of {self.limit_mb}MB")
        if self.policy == "pause":
            gc.collect()
            await asyncio.sleep(self.pause_seconds)
            return batch_size
        return max(self.min_batch_size, int(batch_size * self.shrink_factor))
