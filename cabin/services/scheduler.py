"""
Repeating tasks on the asyncio event loop.

Usage:
    scheduler = AsyncioScheduler()
    task = scheduler.every(1.0, poll)
    ...
    task.cancel()  # e.g., when the tile that owns the poll is removed
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RepeatingTask:
    """
    Calls `callback` every `interval` seconds until cancelled.

    Exceptions raised by the callback are logged and do not stop the task.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callable[[], None]) -> None:
        self._loop = loop
        self.interval = interval
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(interval, self._run)
        self.cancelled = False

    def _run(self) -> None:
        if self.cancelled:
            return
        try:
            self._callback()
        except Exception as e:
            logger.error("Repeating task callback failed", exc_info=e)
        if not self.cancelled:
            self._handle = self._loop.call_later(self.interval, self._run)

    def cancel(self) -> None:
        """
        Stop the task. Safe to call more than once.

        Returns:
            None
        """
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """
    Creates RepeatingTask instances on the running event loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def every(self, interval: float, callback: Callable[[], None]) -> RepeatingTask:
        """
        Schedule `callback` to run every `interval` seconds.

        Args:
            interval (float): Seconds between runs; the first run happens after one interval.
            callback (Callable[[], None]): Function to call.

        Returns:
            RepeatingTask: Handle whose cancel() stops the repetition.
        """
        loop = self._loop or asyncio.get_running_loop()
        return RepeatingTask(loop, interval, callback)
