from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, TypeVar

from loguru import logger

T = TypeVar("T")

_Job = tuple[Callable[..., Any], tuple[Any, ...], Optional["asyncio.Future[Any]"]]
_STOP = object()


class SerialExecutor:
    """Runs submitted callables one at a time, in submission order, on one asyncio task.

    Quotes, broker callbacks and user commands all go through here so the controller
    never sees two inputs interleaved.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="serial-executor")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._queue.put_nowait(_STOP)
        await task
        self._task = None

    def submit(self, fn: Callable[..., Any], *args: Any) -> None:
        self._queue.put_nowait((fn, args, None))

    async def call(self, fn: Callable[..., T], *args: Any) -> T:
        if not self.running:
            raise RuntimeError("SerialExecutor is not started")
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((fn, args, future))
        return await future

    async def drain(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                self._execute(item)
            finally:
                self._queue.task_done()

    @staticmethod
    def _execute(job: _Job) -> None:
        fn, args, future = job
        try:
            result = fn(*args)
        except Exception as exc:
            if future is not None and not future.done():
                future.set_exception(exc)
                return
            logger.opt(exception=exc).error("Serial job {} failed", getattr(fn, "__name__", fn))
            return
        if future is not None and not future.done():
            future.set_result(result)
