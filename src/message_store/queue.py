"""Strictly serialized FIFO for storage operations.

The backends have no transaction or atomic read-modify-write primitive, so
every repository operation runs as one task on this queue: tasks execute one
at a time in submission order, whatever conversation they touch. A failing
task only fails its own caller; the queue moves on to the next one.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from .errors import OperationTimeoutError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass
class _Task:
    seq: int
    name: str
    operation: Operation
    future: asyncio.Future = field(repr=False)


class OperationQueue:
    """Single-worker asyncio queue.

    Parameters
    ----------
    task_timeout : float | None
        Watchdog limit per task in seconds. A task exceeding it fails with
        :class:`OperationTimeoutError` so a hung backend call cannot stall
        the queue forever. ``None`` disables the watchdog.
    """

    def __init__(self, task_timeout: Optional[float] = None) -> None:
        self.task_timeout = task_timeout
        self._counter = itertools.count(1)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.completed: List[int] = []  # sequence numbers in execution order
        self._history_limit = 1024

    # ----------------- worker lifecycle -----------------
    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._pending is None:
            # First use, or the previous loop went away: rebind.
            self._loop = loop
            self._pending = asyncio.Queue()
            self._worker = None
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(self._pending))
        return self._pending

    async def _run(self, pending: asyncio.Queue) -> None:
        while True:
            task: _Task = await pending.get()
            try:
                await self._execute(task)
            finally:
                pending.task_done()

    async def _execute(self, task: _Task) -> None:
        watchdog: Optional[asyncio.Timeout] = None
        try:
            if self.task_timeout is None:
                result = await task.operation()
            else:
                async with asyncio.timeout(self.task_timeout) as watchdog:
                    result = await task.operation()
        except TimeoutError as e:
            if watchdog is None or not watchdog.expired():
                # raised by the operation itself
                logger.warning("Queued operation %s #%d failed: %s", task.name, task.seq, e)
                if not task.future.done():
                    task.future.set_exception(e)
                return
            logger.warning("Queued operation %s #%d timed out after %ss", task.name, task.seq, self.task_timeout)
            if not task.future.done():
                task.future.set_exception(
                    OperationTimeoutError(f"{task.name} did not finish within {self.task_timeout}s")
                )
        except Exception as e:
            logger.warning("Queued operation %s #%d failed: %s", task.name, task.seq, e)
            if not task.future.done():
                task.future.set_exception(e)
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self.completed.append(task.seq)
            if len(self.completed) > self._history_limit:
                del self.completed[: -self._history_limit]

    # ----------------- public API -----------------
    async def enqueue(self, operation: Operation, *, name: str = "operation") -> Any:
        """Submit ``operation`` and wait for its result.

        The task is placed on the queue before this coroutine first suspends,
        so submission order is call order.
        """
        pending = self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        task = _Task(seq=next(self._counter), name=name, operation=operation, future=future)
        pending.put_nowait(task)
        # Once submitted the task always runs; shield it from caller cancellation.
        return await asyncio.shield(future)

    @property
    def pending(self) -> int:
        return self._pending.qsize() if self._pending is not None else 0

    async def join(self) -> None:
        """Wait until every submitted task has finished."""
        if self._pending is not None and self._loop is asyncio.get_running_loop():
            await self._pending.join()

    async def shutdown(self) -> None:
        """Stop the worker once queued tasks are done."""
        await self.join()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
