"""
Live barcode feed: decouples camera-frame callbacks from the reconciler.

Frame callbacks call ``offer()``, which never blocks; a single consumer task
(``run()``) applies the per-payload cooldown and merges detections into the
session one at a time, so reconciler state is only touched from one place.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from fieldcapture.core.config import SUPPORTED_SYMBOLOGIES
from fieldcapture.core.settings import recognition_settings
from fieldcapture.models.dto import Bounds
from fieldcapture.session import BarcodeOutcome

if TYPE_CHECKING:
    from fieldcapture.reconciler import SessionReconciler

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class BarcodeDetection:
    """One decoded barcode as reported by a camera frame."""

    payload: str
    symbology: str
    bounds: Optional[Bounds] = None
    nearby_lines: Sequence[str] = ()


class CooldownTracker:
    """Suppresses repeat processing of the same payload within a time window.

    Entries are kept in acceptance order, so every call drops the expired
    ones from the front without scanning the whole map.

    Args:
        window_seconds: Minimum time between two accepted sightings
        clock: Monotonic time source (seconds)
    """

    def __init__(
        self, window_seconds: float, clock: Callable[[], float] = time.monotonic
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_seen: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._last_seen)

    def should_process(self, payload: str) -> bool:
        now = self._clock()
        self._prune(now)

        if payload in self._last_seen:
            return False
        self._last_seen[payload] = now
        return True

    def _prune(self, now: float) -> None:
        while self._last_seen:
            oldest, seen = next(iter(self._last_seen.items()))
            if now - seen < self.window_seconds:
                break
            del self._last_seen[oldest]

    def reset(self) -> None:
        self._last_seen.clear()


class BarcodeFeed:
    """Bounded queue of detections with a single consumer.

    Args:
        reconciler: Session the detections are merged into
        maxsize: Queue capacity; detections offered to a full queue are dropped
        cooldown_seconds: Per-payload cooldown window
    """

    def __init__(
        self,
        reconciler: "SessionReconciler",
        maxsize: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.reconciler = reconciler
        self.queue: asyncio.Queue = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else recognition_settings.BARCODE_QUEUE_SIZE
        )
        self.cooldown = CooldownTracker(
            cooldown_seconds
            if cooldown_seconds is not None
            else recognition_settings.BARCODE_COOLDOWN_SECONDS,
            clock=clock,
        )
        self.dropped = 0
        self._closed = False

    def offer(self, detection: BarcodeDetection) -> bool:
        """Enqueue a detection without blocking.

        Returns:
            False if the feed is closed or the queue is full
        """
        if self._closed:
            return False
        try:
            self.queue.put_nowait(detection)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Barcode queue full, detection dropped",
                extra={"payload": detection.payload, "symbology": detection.symbology},
            )
            return False
        return True

    def process(self, detection: BarcodeDetection) -> BarcodeOutcome:
        """Filter one detection and merge it into the session."""
        symbology = (detection.symbology or "").lower()
        if symbology not in SUPPORTED_SYMBOLOGIES:
            logger.debug(
                f"Unsupported symbology {detection.symbology!r}",
                extra={"payload": detection.payload, "symbology": detection.symbology},
            )
            return BarcodeOutcome.REJECTED
        if not (detection.payload or "").strip():
            return BarcodeOutcome.REJECTED
        if not self.cooldown.should_process(detection.payload):
            return BarcodeOutcome.ALREADY_SCANNED

        return self.reconciler.add_barcode(
            detection.payload,
            symbology,
            bounds=detection.bounds,
            nearby_lines=detection.nearby_lines,
        )

    async def run(self) -> Counter[BarcodeOutcome]:
        """Consume detections until ``close()``; returns per-outcome counts."""
        outcomes: Counter[BarcodeOutcome] = Counter()
        while True:
            item = await self.queue.get()
            try:
                if item is _STOP:
                    break
                outcomes[self.process(item)] += 1
            finally:
                self.queue.task_done()
        logger.info(
            f"Barcode feed stopped after {sum(outcomes.values())} detections",
            extra={"candidate_count": outcomes[BarcodeOutcome.ADDED]},
        )
        return outcomes

    async def close(self) -> None:
        """Stop accepting detections; ``run()`` returns once the queue drains."""
        if self._closed:
            return
        self._closed = True
        await self.queue.put(_STOP)

    def reset(self) -> None:
        """Forget cooldowns, e.g. after the candidate list was cleared."""
        self.cooldown.reset()
