"""Per-job progress channel.

Each phase owns a fixed band of the 0-100 scale. Phases push
`ProgressUpdate`s into the job's channel; the orchestrator is the only
consumer and the only writer of `job.progress`.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

# Render progress never reaches the top of its band until ffmpeg exits.
RENDER_EASING = 0.95


class Phase(str, Enum):
    VALIDATION = "validation"
    DOWNLOAD = "download"
    CONFIGURATION = "configuration"
    RENDER = "render"
    DELIVERY = "delivery"


PHASE_BANDS: dict[Phase, tuple[int, int]] = {
    Phase.VALIDATION: (0, 10),
    Phase.DOWNLOAD: (10, 40),
    Phase.CONFIGURATION: (40, 45),
    Phase.RENDER: (45, 90),
    Phase.DELIVERY: (90, 100),
}


@dataclass(frozen=True)
class ProgressUpdate:
    phase: Phase
    fraction: float
    stage: str | None = None

    @property
    def percent(self) -> int:
        low, high = PHASE_BANDS[self.phase]
        fraction = min(1.0, max(0.0, self.fraction))
        if self.phase is Phase.RENDER and fraction < 1.0:
            fraction *= RENDER_EASING
        return int(low + (high - low) * fraction)


class ProgressChannel:
    """Unbounded queue of updates with a close sentinel.

    `report` is synchronous so it can be called from subprocess readers and
    download callbacks without awaiting.
    """

    _CLOSED = object()

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def report(self, phase: Phase, fraction: float, stage: str | None = None) -> None:
        if self._closed:
            return
        self._queue.put_nowait(ProgressUpdate(phase, fraction, stage))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressUpdate]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressUpdate]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class ProgressTracker:
    """Folds updates into a monotonically non-decreasing percentage."""

    def __init__(self, initial: int = 0):
        self.percent = initial
        self.stage: str | None = None

    def apply(self, update: ProgressUpdate) -> bool:
        """Returns True if the percentage or the stage changed."""
        changed = False
        percent = update.percent
        if percent > self.percent:
            self.percent = percent
            changed = True
        if update.stage and update.stage != self.stage:
            self.stage = update.stage
            changed = True
        return changed
