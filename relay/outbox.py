"""
Per-connection outbound queue

The room only ever enqueues frames; a writer task per connection does the
actual sends, so a peer that stops reading stalls nobody but itself.
"""
import asyncio
import logging
from typing import Optional

from .config import OUTBOX_SIZE

logger = logging.getLogger("presence_relay")


class Outbox:

    def __init__(self, connection, stats: dict, label: str = "", maxsize: int = OUTBOX_SIZE):
        self.connection = connection
        self.label = label
        self._stats = stats
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def put(self, text: str) -> bool:
        """Queue a frame without waiting; False (and counted as a failure) when full"""
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self._stats["send_failures"] += 1
            logger.debug(f"Outbox for {self.label} full, dropping frame")
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued frame has been attempted"""
        await self._queue.join()

    async def _run(self):
        while True:
            text = await self._queue.get()
            try:
                await self.connection.send_str(text)
            except Exception as e:
                self._stats["send_failures"] += 1
                logger.debug(f"Send to {self.label} failed: {e}")
            else:
                self._stats["sent"] += 1
            finally:
                self._queue.task_done()
