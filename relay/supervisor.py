"""
Liveness supervisor: the periodic timer behind a room's heartbeat tick
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("presence_relay")


class LivenessSupervisor:
    """
    Calls on_tick every `interval` seconds until stopped.

    One supervisor runs per room while the room has open connections. The
    callback only enqueues work for the room; the tick itself (keepalive,
    prune, snapshot) is processed on the room's event stream.
    """

    def __init__(self, on_tick: Callable[[], None], interval: float):
        self._on_tick = on_tick
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())

    def stop(self) -> None:
        """Cancel the timer; safe to call any number of times"""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                self._on_tick()
            except Exception:
                logger.exception("Liveness tick scheduling failed")
