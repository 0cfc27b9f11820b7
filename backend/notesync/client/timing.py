"""Throttle and debounce timers driving async callbacks on the running loop."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class _Runner:
    def __init__(self, callback: AsyncCallback):
        self._callback = callback
        self._tasks: Set[asyncio.Task] = set()

    def _invoke(self) -> None:
        task = asyncio.ensure_future(self._callback())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("timed callback failed", exc_info=task.exception())

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        """Wait for callbacks that already started."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class Throttle(_Runner):
    """
    Leading + trailing throttle. The first trigger runs the callback at once
    and opens a window; triggers inside the window collapse into a single
    trailing run when it closes, which opens the next window.
    """

    def __init__(self, window: float, callback: AsyncCallback):
        super().__init__(callback)
        self.window = window
        self._handle: Optional[asyncio.TimerHandle] = None
        self._trailing = False

    @property
    def window_open(self) -> bool:
        return self._handle is not None

    @property
    def trailing_pending(self) -> bool:
        return self._trailing

    def trigger(self) -> None:
        if self._handle is None:
            self._invoke()
            self._open_window()
        else:
            self._trailing = True

    def _open_window(self) -> None:
        self._handle = asyncio.get_running_loop().call_later(self.window, self._window_closed)

    def _window_closed(self) -> None:
        self._handle = None
        if self._trailing:
            self._trailing = False
            self._invoke()
            self._open_window()

    async def flush(self) -> None:
        """Run a pending trailing call now and wait for it."""
        if self._trailing:
            self._trailing = False
            self._invoke()
        await self.drain()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._trailing = False


class Debounce(_Runner):
    """Runs the callback once `window` seconds pass without a new trigger."""

    def __init__(self, window: float, callback: AsyncCallback):
        super().__init__(callback)
        self.window = window
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.window, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._invoke()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
