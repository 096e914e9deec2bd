"""Serialized execution queue shared by all workflow instances."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple

from .contracts import QueueTask
from .errors import InvalidStateError

logger = logging.getLogger(__name__)

TaskHandler = Callable[[QueueTask], Awaitable[Any]]


class ExecutionDispatcher:
    """Single-consumer queue applying one mutating task at a time.

    Tasks from any number of callers are handled strictly in submission
    order by one worker task. :meth:`submit` waits for the task to be handled
    and re-raises the handler's exception to the submitter.
    """

    def __init__(self, handler: TaskHandler) -> None:
        self._handler = handler
        self._queue: Optional[asyncio.Queue[Tuple[QueueTask, asyncio.Future]]] = None
        self._worker: Optional[asyncio.Task] = None
        self._current: Optional[QueueTask] = None
        self._current_future: Optional[asyncio.Future] = None
        self.processed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def is_processing(self) -> bool:
        return self._current is not None

    @property
    def current_task(self) -> Optional[QueueTask]:
        return self._current

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="phaseflow-dispatcher")

    def enqueue(self, task: QueueTask) -> asyncio.Future:
        """Queue ``task`` and return a future resolved once it is handled."""
        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((task, future))
        logger.debug(
            f"Queued {task.operation.value} task {task.id} for instance {task.instance_id}"
        )
        return future

    async def submit(self, task: QueueTask) -> Any:
        return await self.enqueue(task)

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            task, future = await self._queue.get()
            self._current = task
            self._current_future = future
            try:
                result = await self._handler(task)
            except Exception as exc:
                logger.error(
                    f"Queue task {task.id} ({task.operation.value}) for instance "
                    f"{task.instance_id} failed: {exc}"
                )
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._current = None
                self._current_future = None
                self.processed += 1
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued task has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop the worker and fail any tasks still waiting."""
        in_flight = self._current_future
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if in_flight is not None and not in_flight.done():
            in_flight.set_exception(
                InvalidStateError("Dispatcher closed while task was running")
            )
        if self._queue is None:
            return
        while not self._queue.empty():
            task, future = self._queue.get_nowait()
            if not future.done():
                future.set_exception(
                    InvalidStateError(f"Dispatcher closed before task {task.id} ran")
                )
            self._queue.task_done()
        self._current = None
