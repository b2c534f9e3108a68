"""
Execution Queue

Serializes order executions: tasks are drained in FIFO order by a single
worker, each one runs to completion, and the worker waits a pacing delay
before taking the next one so exchange rate limits are respected.

Usage:
    queue = ExecutionQueue(executor=service.execute_task)
    future = queue.enqueue(task)   # from sync code on the event loop
    result = await future          # optional
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from signal_trader.trading_engine.types import ExecutionTask

logger = logging.getLogger(__name__)


def _retrieve_exception(future: asyncio.Future) -> None:
    # Most enqueued futures are never awaited; mark failures as seen
    if not future.cancelled():
        future.exception()


class ExecutionQueue:
    """
    Strict FIFO of ExecutionTasks with at most one execution at a time.

    Args:
        executor: Coroutine function performing one task
        pacing_seconds: Delay after each execution before the next starts
        on_error: Called with (task, exception) when the executor raises
        shutdown_manager: Optional ShutdownManager tracking in-flight executions
        sleep: Injectable sleep coroutine (tests pass a fake)
    """

    def __init__(
        self,
        executor: Callable[[ExecutionTask], Awaitable[Any]],
        pacing_seconds: float = 0.1,
        on_error: Optional[Callable[[ExecutionTask, Exception], Any]] = None,
        shutdown_manager=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._executor = executor
        self._pacing_seconds = pacing_seconds
        self._on_error = on_error
        self._shutdown_manager = shutdown_manager
        self._sleep = sleep

        self._pending: Deque[Tuple[ExecutionTask, asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._processing = False

    @property
    def length(self) -> int:
        """Tasks waiting to execute (excludes the one currently running)"""
        return len(self._pending)

    @property
    def processing(self) -> bool:
        return self._processing

    def enqueue(self, task: ExecutionTask) -> asyncio.Future:
        """
        Append a task and make sure the worker is draining.

        Must be called from the event loop thread. Never blocks.

        Returns:
            Future resolved with the executor's result (or its exception)
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        future.add_done_callback(_retrieve_exception)
        self._pending.append((task, future))

        logger.debug(f"Queued {task.kind.value} execution for order {task.order_id} (queue length {len(self._pending)})")

        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return future

    async def _drain(self):
        self._processing = True
        try:
            while self._pending:
                task, future = self._pending.popleft()
                if future.cancelled():
                    continue

                try:
                    result = await self._run(task)
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    raise
                except Exception as e:
                    logger.error(f"Execution failed for order {task.order_id} ({task.kind.value}): {e}", exc_info=True)
                    if not future.done():
                        future.set_exception(e)
                    self._report_error(task, e)
                else:
                    if not future.done():
                        future.set_result(result)

                await self._sleep(self._pacing_seconds)
        finally:
            self._processing = False

    async def _run(self, task: ExecutionTask) -> Any:
        if self._shutdown_manager is None:
            return await self._executor(task)
        async with self._shutdown_manager.execution_in_flight(task):
            return await self._executor(task)

    def _report_error(self, task: ExecutionTask, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(task, error)
        except Exception as e:
            logger.error(f"Execution error handler failed: {e}", exc_info=True)

    async def join(self) -> None:
        """Wait until every queued task has been executed"""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    def clear(self) -> int:
        """
        Drop all tasks not yet started. Their futures are cancelled; the
        running execution (if any) is left to finish.

        Returns:
            Number of tasks dropped
        """
        dropped = 0
        while self._pending:
            _, future = self._pending.popleft()
            if not future.done():
                future.cancel()
            dropped += 1
        if dropped:
            logger.info(f"Cleared {dropped} queued executions")
        return dropped

    async def stop(self, timeout: float = 60.0) -> None:
        """Clear pending tasks and let the running execution finish"""
        self.clear()
        if self._worker is None or self._worker.done():
            return
        done, _ = await asyncio.wait({self._worker}, timeout=timeout)
        if not done:
            logger.warning(f"Execution still running after {timeout}s - cancelling worker")
            self._worker.cancel()
            await asyncio.wait({self._worker})
