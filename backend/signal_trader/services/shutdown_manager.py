"""
Graceful Shutdown Manager

Keeps a ledger of the execution tasks currently placing orders on the
exchange. On shutdown the execution queue is refused new work and the process
waits until the ledger is empty, so no order is left half-placed.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

from signal_trader.exceptions import ShutdownInProgressError
from signal_trader.trading_engine.types import ExecutionTask

logger = logging.getLogger(__name__)


def _ledger_key(task: ExecutionTask) -> str:
    return f"{task.order_id}:{task.kind.value}"


class ShutdownManager:
    """
    Ledger of in-flight executions, shared with the ExecutionQueue.

    Usage:
        async with shutdown_manager.execution_in_flight(task):
            await executor(task)

        result = await shutdown_manager.prepare_shutdown(timeout=60)
    """

    def __init__(self):
        self._accepting = True
        self._in_flight: Dict[str, datetime] = {}
        self._drained = asyncio.Event()
        self._drained.set()
        self._requested_at: Optional[datetime] = None

    @property
    def is_shutting_down(self) -> bool:
        return not self._accepting

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def in_flight_executions(self) -> List[str]:
        """'<order id>:<target kind>' for every running execution, oldest first"""
        return sorted(self._in_flight, key=self._in_flight.get)

    @asynccontextmanager
    async def execution_in_flight(self, task: ExecutionTask):
        """
        Record one execution for the duration of the block.

        Raises:
            ShutdownInProgressError: shutdown already requested
        """
        if not self._accepting:
            raise ShutdownInProgressError(
                f"Shutdown in progress - {task.kind.value} for order {task.order_id} not executed"
            )

        key = _ledger_key(task)
        self._in_flight[key] = datetime.utcnow()
        self._drained.clear()
        try:
            yield
        finally:
            self._in_flight.pop(key, None)
            if not self._in_flight:
                self._drained.set()

    async def prepare_shutdown(self, timeout: float = 60.0) -> dict:
        """
        Stop accepting executions and wait for the ledger to empty.

        Returns:
            dict with ready, in_flight_count, waited_seconds and message;
            on timeout also the executions still running
        """
        self._accepting = False
        self._requested_at = datetime.utcnow()

        if not self._in_flight:
            logger.info("Shutdown requested - no executions in flight")
            return {
                "ready": True,
                "in_flight_count": 0,
                "waited_seconds": 0,
                "message": "No executions in flight - ready for shutdown",
            }

        logger.info(f"Shutdown requested - waiting up to {timeout}s for {', '.join(self.in_flight_executions())}")
        try:
            await asyncio.wait_for(self._drained.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            stuck = self.in_flight_executions()
            logger.warning(f"Shutdown timeout after {timeout}s - still executing: {', '.join(stuck)}")
            return {
                "ready": False,
                "in_flight_count": len(stuck),
                "in_flight": stuck,
                "waited_seconds": timeout,
                "message": f"Timeout: {len(stuck)} executions still in flight after {timeout}s",
            }

        waited = (datetime.utcnow() - self._requested_at).total_seconds()
        logger.info(f"Execution ledger drained after {waited:.1f}s")
        return {
            "ready": True,
            "in_flight_count": 0,
            "waited_seconds": waited,
            "message": f"All executions finished after {waited:.1f}s - ready for shutdown",
        }

    def cancel_shutdown(self) -> None:
        """Accept executions again (monitoring restarted)"""
        if self._accepting:
            return
        self._accepting = True
        self._requested_at = None
        logger.info("Shutdown cancelled - accepting executions")

    def get_status(self) -> dict:
        return {
            "shutting_down": self.is_shutting_down,
            "in_flight_count": self.in_flight_count,
            "in_flight": self.in_flight_executions(),
            "shutdown_requested_at": self._requested_at.isoformat() if self._requested_at else None,
        }
