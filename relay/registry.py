"""
Connection registry: client id -> live session (connection, liveness, state)
"""
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

# Marker so touch() can tell "no state given" apart from an explicit value
_UNSET = object()


@dataclass
class ClientSession:
    """One identified participant and the connection it owns"""
    id: str
    connection: Any
    last_seen: float
    state: Any = None


class Registry:
    """
    Holds the sessions of a single room.

    Not thread-safe: every call is expected to come from the room's
    serialized event stream.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._sessions: Dict[str, ClientSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._sessions

    def __iter__(self) -> Iterator[ClientSession]:
        return iter(list(self._sessions.values()))

    def ids(self) -> List[str]:
        return list(self._sessions)

    def get(self, client_id: str) -> Optional[ClientSession]:
        return self._sessions.get(client_id)

    def register(self, client_id: str, connection) -> Optional[ClientSession]:
        """
        Insert a fresh session for client_id.

        A session already stored under the same id is replaced (last hello
        wins) and returned so the caller can deal with its connection.
        """
        previous = self._sessions.pop(client_id, None)
        self._sessions[client_id] = ClientSession(
            id=client_id,
            connection=connection,
            last_seen=self._clock(),
        )
        return previous

    def touch(self, client_id: str, state: Any = _UNSET) -> bool:
        """Refresh liveness (and optionally state); False if client_id is unknown"""
        session = self._sessions.get(client_id)
        if session is None:
            return False
        session.last_seen = self._clock()
        if state is not _UNSET:
            session.state = state
        return True

    def remove(self, client_id: str) -> Optional[ClientSession]:
        return self._sessions.pop(client_id, None)

    def snapshot(self) -> List[Any]:
        """All known states, in registration order, skipping clients with none yet"""
        return [s.state for s in self._sessions.values() if s.state is not None]

    def idle_since(self, now: float, threshold: float) -> List[str]:
        return [
            cid for cid, s in self._sessions.items()
            if now - s.last_seen > threshold
        ]
