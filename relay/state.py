"""
In-memory room directory: room name -> Room, created on first use
"""
import logging
from typing import Dict, List, Optional

from .config import HEARTBEAT_INTERVAL, IDLE_TIMEOUT
from .room import Room

logger = logging.getLogger("presence_relay")


class RoomDirectory:
    """
    Lazily creates one Room per name and reclaims it once its last
    connection has gone. Only touched from the event loop thread.
    """

    def __init__(self, heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 idle_timeout: float = IDLE_TIMEOUT):
        self.heartbeat_interval = heartbeat_interval
        self.idle_timeout = idle_timeout
        self._rooms: Dict[str, Room] = {}
        self._attached: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def get(self, name: str) -> Optional[Room]:
        return self._rooms.get(name)

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def acquire(self, name: str) -> Room:
        """Return the live room for name (creating it if needed) and attach one connection"""
        room = self._rooms.get(name)
        if room is None:
            room = Room(name, self.heartbeat_interval, self.idle_timeout)
            room.start()
            self._rooms[name] = room
            logger.info(f"🎪 Room opened: {name}")
        self._attached[name] = self._attached.get(name, 0) + 1
        return room

    async def release(self, room: Room) -> None:
        """Detach one connection; the room is stopped when nothing is attached"""
        name = room.name
        if self._rooms.get(name) is not room:
            return
        remaining = self._attached.get(name, 0) - 1
        if remaining > 0:
            self._attached[name] = remaining
            return
        self._attached.pop(name, None)
        del self._rooms[name]
        await room.stop()
        logger.info(f"🛑 Room closed: {name}")

    async def shutdown(self) -> None:
        rooms = list(self._rooms.values())
        self._rooms.clear()
        self._attached.clear()
        for room in rooms:
            await room.stop(close_connections=True)
        if rooms:
            logger.info(f"🛑 Closed {len(rooms)} room(s) on shutdown")
