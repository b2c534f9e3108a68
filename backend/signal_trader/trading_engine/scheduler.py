"""
Scheduler for timed order executions

Entries are kept in a heap ordered by fire time. The delay is computed once
when the entry is scheduled and converted to a monotonic deadline, so wall
clock adjustments afterwards do not move it.
"""

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Keyed one-shot timers.

    Args:
        clock: Monotonic clock in seconds (tests inject a fake)
        max_idle_seconds: Longest the background loop sleeps without re-checking
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_idle_seconds: float = 60.0):
        self._clock = clock
        self._max_idle_seconds = max_idle_seconds
        self._heap: List[Tuple[float, int, str]] = []
        self._entries: Dict[str, Tuple[float, int, Callable[[], Any]]] = {}
        self._counter = itertools.count()
        self._task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._stopping = False

    def schedule(self, key: str, delay_seconds: float, callback: Callable[[], Any]) -> float:
        """
        Schedule callback to run once after delay_seconds. Replaces any
        existing entry with the same key. Negative delays fire on the next run.

        Returns:
            Monotonic deadline of the entry
        """
        deadline = self._clock() + max(delay_seconds, 0.0)
        seq = next(self._counter)
        self._entries[key] = (deadline, seq, callback)
        heapq.heappush(self._heap, (deadline, seq, key))
        logger.info(f"Scheduled {key} in {max(delay_seconds, 0.0):.1f}s")

        if self._wakeup is not None:
            self._wakeup.set()
        return deadline

    def cancel(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info(f"Cancelled scheduled {key}")
        return removed

    def has(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def next_deadline(self) -> Optional[float]:
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def _discard_stale(self) -> None:
        # Cancelled or replaced entries stay in the heap until they reach the top
        while self._heap:
            deadline, seq, key = self._heap[0]
            entry = self._entries.get(key)
            if entry is not None and entry[1] == seq:
                return
            heapq.heappop(self._heap)

    async def run_due(self) -> List[str]:
        """
        Fire every entry whose deadline has passed, earliest first.

        Callback errors are logged and do not stop the remaining entries.

        Returns:
            Keys that fired
        """
        fired = []
        now = self._clock()
        while True:
            self._discard_stale()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, key = heapq.heappop(self._heap)
            _, _, callback = self._entries.pop(key)
            fired.append(key)
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Scheduled callback {key} failed: {e}", exc_info=True)
        return fired

    # ========================================
    # BACKGROUND LOOP
    # ========================================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._wakeup = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the loop after the callback in progress (if any) returns"""
        if self._task is None:
            return
        self._stopping = True
        self._wakeup.set()
        try:
            await self._task
        finally:
            self._task = None
            self._wakeup = None
        logger.info("Scheduler stopped")

    def clear(self) -> None:
        self._entries.clear()
        self._heap.clear()

    async def _run(self):
        while not self._stopping:
            self._wakeup.clear()
            await self.run_due()
            if self._stopping:
                break

            deadline = self.next_deadline()
            timeout = self._max_idle_seconds
            if deadline is not None:
                timeout = min(max(deadline - self._clock(), 0.0), self._max_idle_seconds)

            waiter = asyncio.ensure_future(self._wakeup.wait())
            try:
                await asyncio.wait({waiter}, timeout=timeout)
            finally:
                waiter.cancel()
