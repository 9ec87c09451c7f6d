"""Cancellable background tasks used by each dial: a repeating poll and a debounce timer."""

import asyncio
import logging
from asyncio import Task
from typing import Any, Awaitable, Callable, Optional


class RepeatingTask:
    """Runs a coroutine function over and over with a fixed pause between runs.

    Each run completes (or fails) before the pause starts, so runs never
    overlap. Failures are logged and do not stop the loop. cancel() is
    synchronous and idempotent and may be called from inside the function.
    """

    def __init__(self, func: Callable[[], Awaitable[Any]], interval: float, name: str = "repeating task"):
        self._logger = logging.getLogger(__name__)
        self._func = func
        self._interval = interval
        self._name = name
        self._task: Optional[Task[Any]] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the loop unless it is already running. The first run starts immediately."""
        if self.active:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._logger.debug(f"Started {self._name} (interval={self._interval}s)")
        return True

    def cancel(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            self._logger.debug(f"Stopped {self._name}")

    async def _run(self):
        while True:
            try:
                await self._func()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.error(f"Unexpected error in {self._name}", exc_info=True)
            await asyncio.sleep(self._interval)


class Debouncer:
    """Trailing-edge debounce: only the last call scheduled within the idle window runs.

    schedule() replaces whatever is pending, including a call that already
    started running, so at most one call is pending or in flight at a time.
    """

    def __init__(self, delay: float, name: str = "debounce"):
        self._logger = logging.getLogger(__name__)
        self._delay = delay
        self._name = name
        self._task: Optional[Task[Any]] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, func: Callable[..., Awaitable[Any]], *args):
        if self.pending:
            self._logger.debug(f"{self._name}: replacing pending call")
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(func, args))

    def cancel(self):
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, func: Callable[..., Awaitable[Any]], args: tuple):
        await asyncio.sleep(self._delay)
        if self._task is not asyncio.current_task():
            return
        try:
            await func(*args)
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.error(f"Unexpected error in {self._name}", exc_info=True)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
