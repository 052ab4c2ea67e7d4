"""
Room session manager

A Room holds the live connections of one logical room and processes every
event that touches them (accept, inbound frame, close, liveness tick) one at
a time on a single asyncio queue, so the registry never sees concurrent
mutation and needs no locks. Handling an event never waits on a peer:
outbound frames go to each connection's Outbox and closes run as
background tasks.
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from aiohttp import WSCloseCode

from .config import HEARTBEAT_INTERVAL, IDLE_TIMEOUT, OUTBOX_SIZE
from .outbox import Outbox
from .protocol import (
    PING, Hello, encode, goodbye_message, parse_message, state_message,
)
from .registry import Registry
from .supervisor import LivenessSupervisor
from .utils import generate_connection_id

logger = logging.getLogger("presence_relay")

# (code, reason) pairs for server initiated closes
TIMEOUT_CLOSE = (WSCloseCode.GOING_AWAY, b"timeout")
SUPERSEDED_CLOSE = (4000, b"superseded")
SHUTDOWN_CLOSE = (WSCloseCode.GOING_AWAY, b"going away")


class Phase(enum.Enum):
    UNIDENTIFIED = "unidentified"
    IDENTIFIED = "identified"
    CLOSED = "closed"


class EventKind(enum.Enum):
    ACCEPT = "accept"
    MESSAGE = "message"
    CLOSE = "close"
    TICK = "tick"


@dataclass
class Peer:
    """Protocol state of one accepted connection"""
    connection: Any
    outbox: Outbox
    conn_id: str = field(default_factory=generate_connection_id)
    phase: Phase = Phase.UNIDENTIFIED
    client_id: Optional[str] = None


@dataclass
class RoomEvent:
    kind: EventKind
    connection: Any = None
    data: Any = None
    done: Optional[asyncio.Future] = None


class Room:
    """
    One room actor.

    Connection handles only need `send_str(text)` and
    `close(code=..., message=...)` coroutines, which is what
    aiohttp's WebSocketResponse provides.
    """

    def __init__(
        self,
        name: str,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        idle_timeout: float = IDLE_TIMEOUT,
        clock=time.monotonic,
        outbox_size: int = OUTBOX_SIZE,
    ):
        self.name = name
        self.idle_timeout = idle_timeout
        self.outbox_size = outbox_size
        self._clock = clock
        self.registry = Registry(clock)
        self.peers: Dict[Any, Peer] = {}
        self.supervisor = LivenessSupervisor(self._schedule_tick, heartbeat_interval)
        self.stats = {"sent": 0, "send_failures": 0, "pruned": 0, "dropped": 0}
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._stopped = False
        self._tick_pending = False
        self._background: Set[asyncio.Task] = set()

    @property
    def is_empty(self) -> bool:
        return not self.peers

    def describe(self) -> dict:
        return {
            "name": self.name,
            "clients": len(self.registry),
            "connections": len(self.peers),
            "stats": dict(self.stats),
        }

    # ============================================================
    # EVENT STREAM
    # ============================================================

    def start(self) -> None:
        if self._worker is None and not self._stopped:
            self._worker = asyncio.ensure_future(self._run())

    def submit(self, kind: EventKind, connection=None, data=None) -> asyncio.Future:
        """Queue an event; the returned future resolves once it has been handled"""
        done = asyncio.get_running_loop().create_future()
        if self._stopped:
            done.set_result(None)
            return done
        self._queue.put_nowait(RoomEvent(kind, connection, data, done))
        return done

    async def _run(self):
        while True:
            event = await self._queue.get()
            try:
                self.handle(event)
            except Exception:
                logger.exception(f"Room {self.name}: failed to handle {event.kind.value} event")
            finally:
                if event.done is not None and not event.done.done():
                    event.done.set_result(None)

    def handle(self, event: RoomEvent) -> None:
        if event.kind is EventKind.ACCEPT:
            self.on_accept(event.connection)
        elif event.kind is EventKind.MESSAGE:
            self.on_message(event.connection, event.data)
        elif event.kind is EventKind.CLOSE:
            self.on_close(event.connection)
        elif event.kind is EventKind.TICK:
            self._tick_pending = False
            # A tick queued just before the supervisor stopped must not fire
            if self.supervisor.running:
                self.tick()

    def _schedule_tick(self) -> None:
        # At most one tick waits in the queue at a time
        if self._tick_pending:
            return
        self._tick_pending = True
        self.submit(EventKind.TICK)

    async def flush(self) -> None:
        """Wait until every open connection's queued frames have been attempted"""
        await asyncio.gather(*(peer.outbox.join() for peer in list(self.peers.values())))

    async def stop(self, close_connections: bool = False) -> None:
        """Stop the ticker and the worker; optionally close every connection first"""
        self.supervisor.stop()
        if close_connections:
            for peer in list(self.peers.values()):
                if peer.client_id is not None:
                    self.registry.remove(peer.client_id)
                self._detach(peer)
                self._close_later(peer.connection, *SHUTDOWN_CLOSE)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        self._stopped = True
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        for peer in self.peers.values():
            peer.outbox.stop()
        # Release anyone still waiting on events that will never run
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event.done is not None and not event.done.done():
                event.done.set_result(None)

    # ============================================================
    # SESSION PROTOCOL
    # ============================================================

    def on_accept(self, connection) -> Peer:
        conn_id = generate_connection_id()
        outbox = Outbox(connection, self.stats, label=conn_id, maxsize=self.outbox_size)
        peer = Peer(connection, outbox, conn_id=conn_id)
        self.peers[connection] = peer
        outbox.start()
        self.supervisor.start()
        logger.debug(f"🔌 {conn_id} connected to room {self.name} ({len(self.peers)} open)")
        return peer

    def on_message(self, connection, text) -> None:
        peer = self.peers.get(connection)
        if peer is None or peer.phase is Phase.CLOSED:
            return

        message = parse_message(text)
        if message is None:
            self._drop(peer, "malformed frame")
        elif isinstance(message, Hello):
            self._hello(peer, message.id)
        elif peer.phase is Phase.IDENTIFIED:
            if self.registry.touch(peer.client_id, message.state):
                self.broadcast(state_message([message.state]), except_id=peer.client_id)
        else:
            self._drop(peer, "update before hello")

    def on_close(self, connection) -> None:
        peer = self.peers.pop(connection, None)
        if peer is None:
            return
        peer.outbox.stop()
        if not self.peers:
            self.supervisor.stop()

        client_id = peer.client_id
        identified = peer.phase is Phase.IDENTIFIED
        self._detach(peer)
        if identified and self._release_identity(client_id, connection):
            logger.info(f"👋 {client_id} left room {self.name} ({len(self.registry)} remaining)")

    def _hello(self, peer: Peer, client_id: str) -> None:
        if peer.client_id is not None and peer.client_id != client_id:
            self._release_identity(peer.client_id, peer.connection)

        previous = self.registry.register(client_id, peer.connection)
        if previous is not None and previous.connection is not peer.connection:
            old_peer = self.peers.get(previous.connection)
            if old_peer is not None:
                self._detach(old_peer)
            self._close_later(previous.connection, *SUPERSEDED_CLOSE)
            logger.info(f"♻️ {client_id} reconnected to room {self.name}, closing old connection")

        peer.client_id = client_id
        peer.phase = Phase.IDENTIFIED
        logger.info(f"✅ {client_id} joined room {self.name} [{peer.conn_id}]")
        peer.outbox.put(encode(state_message(self.registry.snapshot())))

    def _release_identity(self, client_id: str, connection) -> bool:
        """Remove client_id if this connection still owns it and tell everyone else"""
        session = self.registry.get(client_id)
        if session is None or session.connection is not connection:
            return False
        self.registry.remove(client_id)
        self.broadcast(goodbye_message(client_id))
        return True

    def _detach(self, peer: Peer) -> None:
        peer.client_id = None
        peer.phase = Phase.CLOSED

    def _drop(self, peer: Peer, why: str) -> None:
        self.stats["dropped"] += 1
        logger.debug(f"Room {self.name}: dropped frame from {peer.conn_id} ({why})")

    # ============================================================
    # LIVENESS
    # ============================================================

    def tick(self) -> None:
        """Keepalive every connection, prune idle clients, then rebroadcast the snapshot"""
        ping = encode(PING)
        for peer in list(self.peers.values()):
            peer.outbox.put(ping)
        self.prune()
        self.broadcast(state_message(self.registry.snapshot()))

    def prune(self, now: Optional[float] = None) -> List[str]:
        now = self._clock() if now is None else now
        pruned = []
        for client_id in self.registry.idle_since(now, self.idle_timeout):
            session = self.registry.remove(client_id)
            if session is None:
                continue
            peer = self.peers.get(session.connection)
            if peer is not None:
                self._detach(peer)
            self._close_later(session.connection, *TIMEOUT_CLOSE)
            self.stats["pruned"] += 1
            pruned.append(client_id)
            logger.info(f"🧹 Pruning idle client {client_id} from room {self.name}")
            self.broadcast(goodbye_message(client_id))
        return pruned

    # ============================================================
    # BROADCAST
    # ============================================================

    def broadcast(self, payload: dict, except_id: Optional[str] = None) -> int:
        """
        Encode payload once and queue it for every registered client except
        except_id. A full or failing outbox is counted and skipped; returns
        the number of clients the frame was queued for.
        """
        text = encode(payload)
        queued = 0
        for session in self.registry:
            if session.id == except_id:
                continue
            peer = self.peers.get(session.connection)
            if peer is None:
                self.stats["send_failures"] += 1
                continue
            if peer.outbox.put(text):
                queued += 1
        return queued

    def _close_later(self, connection, code, reason: bytes) -> None:
        # Closing waits for the peer's close frame; keep that off the event stream
        task = asyncio.ensure_future(self._close(connection, code, reason))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _close(self, connection, code, reason: bytes) -> None:
        try:
            await connection.close(code=code, message=reason)
        except Exception as e:
            logger.debug(f"Room {self.name}: close failed: {e}")
