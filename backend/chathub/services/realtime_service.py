# /chathub/services/realtime_service.py

import asyncio
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

import structlog
from pydantic import BaseModel

from chathub.utils.metrics import active_connections_gauge, realtime_deliveries_counter

# Channel (room) membership and ordered fire-and-forget delivery for live
# connections. The transport only has to provide an async ``send(frame)``;
# everything about who receives what lives here.

log = structlog.get_logger(__name__)

CHAT_ROOM_PREFIX = "chat_"
OWNER_ROOM_PREFIX = "dashboard_"
STAFF_ROOM_PREFIX = "staff_"


def chat_room(chat_id: str) -> str:
    return f"{CHAT_ROOM_PREFIX}{chat_id}"


def owner_room(owner_id: str) -> str:
    return f"{OWNER_ROOM_PREFIX}{owner_id}"


def staff_room(tenant_id: str) -> str:
    return f"{STAFF_ROOM_PREFIX}{tenant_id}"


class Role(str, Enum):
    VISITOR = "visitor"
    OWNER = "owner"
    STAFF = "staff"


class ConnectionIdentity(BaseModel):
    """Who is on the other end, as established at handshake."""
    role: Role
    tenant_id: Optional[str] = None
    chatbot_code: Optional[str] = None
    owner_id: Optional[str] = None
    staff_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def actor_id(self) -> Optional[str]:
        if self.role == Role.OWNER:
            return self.owner_id
        if self.role == Role.STAFF:
            return self.staff_id
        return None


SendFunc = Callable[[Dict[str, Any]], Awaitable[None]]


class Connection:
    """
    One live client connection with its own FIFO outbound queue.

    Frames are enqueued synchronously and written by a dedicated writer task,
    so the order frames reach this client equals the order they were
    enqueued. Must be created inside a running event loop.
    """

    def __init__(self, send: SendFunc, identity: ConnectionIdentity, connection_id: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex
        self.identity = identity
        self._send = send
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self._writer = asyncio.create_task(self._drain())

    def enqueue(self, event: str, data: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait({"event": event, "data": data})
        return True

    async def _drain(self):
        while True:
            frame = await self._queue.get()
            try:
                await self._send(frame)
                realtime_deliveries_counter.labels(event=frame["event"], status="sent").inc()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                realtime_deliveries_counter.labels(event=frame["event"], status="error").inc()
                log.warning("Realtime send failed; closing writer", connection_id=self.id, error=str(e))
                self.closed = True
                self._discard_pending()
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self):
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def flush(self):
        """Wait until every enqueued frame has been written (or dropped)."""
        await self._queue.join()

    async def close(self):
        self.closed = True
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._discard_pending()


class ConnectionRegistry:
    """Process-wide map of rooms to member connections."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._memberships: Dict[str, Set[str]] = {}

    def register(self, connection: Connection) -> None:
        self._connections[connection.id] = connection
        self._memberships.setdefault(connection.id, set())
        active_connections_gauge.labels(role=connection.identity.role.value).inc()

    async def unregister(self, connection: Connection) -> None:
        """Remove the connection from every room and stop its writer."""
        for room in list(self._memberships.get(connection.id, ())):
            self.leave(connection, room)
        self._memberships.pop(connection.id, None)
        if self._connections.pop(connection.id, None) is not None:
            active_connections_gauge.labels(role=connection.identity.role.value).dec()
        await connection.close()

    def join(self, connection: Connection, room: str) -> None:
        self._rooms.setdefault(room, set()).add(connection.id)
        self._memberships.setdefault(connection.id, set()).add(room)

    def leave(self, connection: Connection, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._rooms[room]
        self._memberships.get(connection.id, set()).discard(room)

    def leave_matching(self, connection: Connection, prefix: str) -> None:
        for room in [r for r in self._memberships.get(connection.id, ()) if r.startswith(prefix)]:
            self.leave(connection, room)

    def switch_chat(self, connection: Connection, chat_id: str) -> None:
        """Move a visitor connection into ``chat_id``'s room, leaving any previous chat room first."""
        self.leave_matching(connection, CHAT_ROOM_PREFIX)
        self.join(connection, chat_room(chat_id))

    def rooms_of(self, connection: Connection) -> Set[str]:
        return set(self._memberships.get(connection.id, ()))

    def members(self, room: str) -> List[Connection]:
        return [self._connections[cid] for cid in self._rooms.get(room, ()) if cid in self._connections]

    def __len__(self) -> int:
        return len(self._connections)


class FanoutRouter:
    """Targeted emit-by-room on top of a ConnectionRegistry."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def emit(
        self,
        rooms: Iterable[str],
        event: str,
        data: Dict[str, Any],
        exclude: Optional[Connection] = None,
    ) -> int:
        """
        Enqueue ``event`` for every member of ``rooms``.

        A connection that belongs to several of the rooms receives the event
        once. ``exclude`` (the originating connection) receives nothing.

        Returns:
            Number of connections the event was enqueued for.
        """
        seen: Set[str] = set()
        delivered = 0
        for room in rooms:
            for connection in self.registry.members(room):
                if connection.id in seen or (exclude is not None and connection.id == exclude.id):
                    continue
                seen.add(connection.id)
                if connection.enqueue(event, data):
                    delivered += 1
        return delivered

    def emit_to(self, connection: Connection, event: str, data: Dict[str, Any]) -> bool:
        return connection.enqueue(event, data)


# Globally accessible instances
connection_registry = ConnectionRegistry()
fanout_router = FanoutRouter(connection_registry)
