"""
Engine Event Bus

Explicit subscriber lists per event name. Handlers may be plain functions
or coroutine functions; a failing handler is logged and does not stop the
others.

Events:
    connected, reconnected, priceUpdate, orderExecuted, orderExecutionError,
    streamError, maxReconnectAttemptsReached, initialized, stopped,
    orderAddedToMonitoring, orderMonitoringCancelled, monitoringResumed,
    orderStatusChanged
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], Any]

# Sent to handlers registered with subscribe_all()
ALL_EVENTS = "*"


class EventBus:
    """Publish / subscribe for engine events"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self.subscribe(ALL_EVENTS, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Dict[str, Any] = None) -> None:
        """
        Deliver an event to its subscribers.

        Sync handlers run immediately; coroutine handlers are scheduled on the
        running loop so emit() never suspends the caller.
        """
        payload = payload or {}
        handlers = self._handlers.get(event, []) + self._handlers.get(ALL_EVENTS, [])
        for handler in handlers:
            try:
                result = handler(event, payload)
            except Exception as e:
                logger.error(f"Event handler for {event} failed: {e}", exc_info=True)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Async event handler failed: {error}")

    async def drain(self) -> None:
        """Wait for scheduled async handlers to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))
