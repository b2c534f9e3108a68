"""
Reconnection Supervisor

Recovers the exchange connection after a price stream drops. A single
recovery loop runs at a time: attempt n waits base_delay * 2^(n-1) seconds
and then reconnects. After max_attempts failed attempts the supervisor gives
up (state FAILED) until reset() is called.

States:
    DISCONNECTED -> BACKING_OFF -> RECONNECTING -> CONNECTED
                         ^               |
                         +---- fail -----+  (FAILED once attempts run out)
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    BACKING_OFF = "backing_off"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay before the given 1-based attempt"""
    return base_delay * 2 ** (attempt - 1)


class ReconnectionSupervisor:
    """
    Drives reconnection with exponential backoff.

    Args:
        connect: Coroutine function re-establishing the connection (raises on failure)
        resubscribe: Called after a successful reconnect to reopen price streams
        emit: Event callback (event_name, payload)
        base_delay: Delay before the first attempt, in seconds
        max_attempts: Attempts before giving up
        sleep: Injectable sleep coroutine
    """

    def __init__(
        self,
        connect: Callable[[], Awaitable[Any]],
        resubscribe: Callable[[], Any],
        emit: Optional[Callable[[str, dict], Any]] = None,
        base_delay: float = 1.0,
        max_attempts: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._connect = connect
        self._resubscribe = resubscribe
        self._emit = emit
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._sleep = sleep

        self.state = ConnectionState.CONNECTED
        self.attempts = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def recovering(self) -> bool:
        return self._task is not None and not self._task.done()

    def notify_disconnected(self, reason: Optional[str] = None) -> Optional[asyncio.Task]:
        """
        Report a lost connection. Starts the recovery loop unless one is
        already running or the supervisor has given up.

        Returns:
            The running recovery task, or None when FAILED
        """
        if self.recovering:
            logger.debug("Reconnection already in progress - notification coalesced")
            return self._task

        if self.state == ConnectionState.FAILED:
            logger.warning("Reconnection attempts exhausted - call reset() to retry")
            return None

        if reason:
            self.last_error = reason
        self.state = ConnectionState.DISCONNECTED
        logger.warning(f"Exchange connection lost{': ' + reason if reason else ''}")
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def run(self) -> bool:
        """
        Recovery loop.

        Returns:
            True once reconnected, False when attempts are exhausted
        """
        while True:
            if self.attempts >= self.max_attempts:
                self.state = ConnectionState.FAILED
                logger.error(f"Max reconnection attempts ({self.max_attempts}) reached")
                await self._fire("maxReconnectAttemptsReached", {
                    "attempts": self.attempts,
                    "lastError": self.last_error,
                })
                return False

            self.attempts += 1
            delay = backoff_delay(self.attempts, self.base_delay)
            self.state = ConnectionState.BACKING_OFF
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.attempts}/{self.max_attempts})")
            await self._sleep(delay)

            self.state = ConnectionState.RECONNECTING
            try:
                await self._connect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.last_error = str(e)
                logger.warning(f"Reconnection attempt {self.attempts} failed: {e}")
                continue

            attempts_used = self.attempts
            self.attempts = 0
            self.state = ConnectionState.CONNECTED
            logger.info(f"Reconnected after {attempts_used} attempt(s)")

            try:
                result = self._resubscribe()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Resubscription after reconnect failed: {e}", exc_info=True)

            await self._fire("reconnected", {"attempts": attempts_used})
            return True

    def reset(self) -> None:
        """Clear the attempt counter so a FAILED supervisor can recover again"""
        self.attempts = 0
        self.last_error = None
        if self.state == ConnectionState.FAILED:
            self.state = ConnectionState.DISCONNECTED

    def mark_connected(self) -> None:
        self.attempts = 0
        self.state = ConnectionState.CONNECTED

    async def stop(self) -> None:
        if self.recovering:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "lastError": self.last_error,
        }

    async def _fire(self, event: str, payload: dict) -> None:
        if self._emit is None:
            return
        try:
            result = self._emit(event, payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}", exc_info=True)
