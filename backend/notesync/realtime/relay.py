"""
In-memory room relay for note collaboration.

Each authenticated socket joins rooms keyed by note id. Updates are
rebroadcast verbatim to every other member of the room; nothing here is
persisted, saving goes through the REST API. Server-side membership is lost
with the socket, clients rejoin after reconnecting.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from notesync.models.permissions import Permission

logger = logging.getLogger(__name__)

# (user_id, note_id, required) -> allowed
AccessPolicy = Callable[[str, str, Permission], bool]

JOIN = "note:join"
LEAVE = "note:leave"
UPDATE = "note:update"
JOINED = "note:joined"
UPDATED = "note-updated"
ERROR = "note:error"


@dataclass(eq=False)
class RelayConnection:
    websocket: Any
    user_id: str
    conn_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: Set[str] = field(default_factory=set)

    async def send(self, event: str, data: dict) -> None:
        await self.websocket.send_json({"event": event, "data": data})


class RoomRelay:
    """
    Room-per-note broadcast hub.

    Connection state machine: register (authenticated) -> join/leave freely
    -> unregister (terminal). No reconnection state is kept.
    """

    def __init__(self, access_policy: Optional[AccessPolicy] = None):
        self._access_policy = access_policy
        # note_id -> members
        self._rooms: Dict[str, Set[RelayConnection]] = {}
        self._connections: Dict[str, RelayConnection] = {}
        self._lock = asyncio.Lock()

    def set_access_policy(self, policy: Optional[AccessPolicy]) -> None:
        self._access_policy = policy

    def _allowed(self, conn: RelayConnection, note_id: str, required: Permission) -> bool:
        if self._access_policy is None:
            return True
        return self._access_policy(conn.user_id, note_id, required)

    async def register(self, websocket: Any, user_id: str) -> RelayConnection:
        conn = RelayConnection(websocket=websocket, user_id=user_id)
        async with self._lock:
            self._connections[conn.conn_id] = conn
        logger.info("relay: %s connected as %s", conn.conn_id, user_id)
        return conn

    async def unregister(self, conn: RelayConnection) -> None:
        async with self._lock:
            self._connections.pop(conn.conn_id, None)
            for note_id in list(conn.rooms):
                self._remove_member(note_id, conn)
            conn.rooms.clear()
        logger.info("relay: %s disconnected", conn.conn_id)

    def _remove_member(self, note_id: str, conn: RelayConnection) -> None:
        members = self._rooms.get(note_id)
        if members is None:
            return
        members.discard(conn)
        if not members:
            del self._rooms[note_id]

    async def _add_member(self, conn: RelayConnection, note_id: str) -> None:
        async with self._lock:
            self._rooms.setdefault(note_id, set()).add(conn)
            conn.rooms.add(note_id)

    async def join(self, conn: RelayConnection, note_id: str) -> bool:
        if not self._allowed(conn, note_id, Permission.READ):
            await conn.send(ERROR, {"noteId": note_id, "message": "Access denied"})
            return False
        await self._add_member(conn, note_id)
        logger.debug("relay: %s joined %s (%d members)", conn.conn_id, note_id, self.room_size(note_id))
        await conn.send(JOINED, {"noteId": note_id})
        return True

    async def leave(self, conn: RelayConnection, note_id: str) -> None:
        async with self._lock:
            self._remove_member(note_id, conn)
            conn.rooms.discard(note_id)
        logger.debug("relay: %s left %s", conn.conn_id, note_id)

    async def relay_update(self, conn: RelayConnection, data: dict) -> int:
        """Rebroadcast an update to the room, joining the sender first if needed."""
        note_id = data["noteId"]
        if not self._allowed(conn, note_id, Permission.WRITE):
            await conn.send(ERROR, {"noteId": note_id, "message": "Write access denied"})
            return 0

        if note_id not in conn.rooms:
            await self._add_member(conn, note_id)
            logger.debug("relay: %s auto-joined %s on update", conn.conn_id, note_id)

        payload = dict(data)
        payload.setdefault("userId", conn.user_id)
        return await self.broadcast(note_id, payload, exclude=conn)

    async def broadcast(self, note_id: str, payload: dict, exclude: Optional[RelayConnection] = None) -> int:
        async with self._lock:
            targets = [c for c in self._rooms.get(note_id, set()) if c is not exclude]

        sent = 0
        dead = []
        for target in targets:
            try:
                await target.send(UPDATED, payload)
                sent += 1
            except Exception as e:
                logger.debug("relay: send to %s failed: %s", target.conn_id, e)
                dead.append(target)

        if dead:
            async with self._lock:
                for target in dead:
                    self._remove_member(note_id, target)
                    target.rooms.discard(note_id)
        return sent

    async def handle_frame(self, conn: RelayConnection, frame: Any) -> None:
        if not isinstance(frame, dict) or not isinstance(frame.get("data"), dict):
            await conn.send(ERROR, {"message": "Malformed frame"})
            return

        event, data = frame.get("event"), frame["data"]
        note_id = data.get("noteId")
        if not isinstance(note_id, str) or not note_id:
            await conn.send(ERROR, {"message": "noteId is required"})
            return

        if event == JOIN:
            await self.join(conn, note_id)
        elif event == LEAVE:
            await self.leave(conn, note_id)
        elif event == UPDATE:
            await self.relay_update(conn, data)
        else:
            await conn.send(ERROR, {"noteId": note_id, "message": f"Unknown event {event!r}"})

    async def serve(self, websocket: WebSocket, user_id: str) -> None:
        """Run the receive loop of one accepted, authenticated socket."""
        conn = await self.register(websocket, user_id)
        try:
            while True:
                try:
                    frame = await websocket.receive_json()
                except ValueError:
                    await conn.send(ERROR, {"message": "Invalid JSON"})
                    continue
                except KeyError:
                    # binary frame, receive_json only reads text
                    await conn.send(ERROR, {"message": "Frames must be JSON text"})
                    continue
                await self.handle_frame(conn, frame)
        except WebSocketDisconnect:
            pass
        finally:
            await self.unregister(conn)

    def room_size(self, note_id: str) -> int:
        return len(self._rooms.get(note_id, ()))

    def rooms_of(self, conn: RelayConnection) -> Set[str]:
        return set(conn.rooms)

    @property
    def connection_count(self) -> int:
        return len(self._connections)
