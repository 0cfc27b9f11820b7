"""
Room membership tracker.

A room is in the membership set once the server acknowledged the join and
until the caller leaves it. The set survives disconnects: the server forgets
its side when the socket drops, so every tracked room (and every join still
waiting for a connection) is reissued exactly once when the connection
becomes ready again.
"""

import asyncio
import logging
from typing import Any, Dict, FrozenSet, Set

from notesync.client.connection import ConnectionManager, ConnectionState
from notesync.client.errors import ConnectionFailed, NetworkError, PermissionDenied

logger = logging.getLogger(__name__)

JOIN = "note:join"
LEAVE = "note:leave"
JOINED = "note:joined"
ERROR = "note:error"


def _consume(fut: asyncio.Future) -> None:
    # nobody may be awaiting a join; mark its outcome as seen
    if not fut.cancelled():
        fut.exception()


class RoomMembershipTracker:
    def __init__(self, connection: ConnectionManager):
        self._connection = connection
        self._members: Set[str] = set()
        self._pending: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()
        connection.on(JOINED, self._on_joined)
        connection.on(ERROR, self._on_error)
        connection.add_state_listener(self._on_state)

    def is_joined(self, note_id: str) -> bool:
        return note_id in self._members

    def is_pending(self, note_id: str) -> bool:
        return note_id in self._pending

    @property
    def joined_rooms(self) -> FrozenSet[str]:
        return frozenset(self._members)

    def join(self, note_id: str) -> asyncio.Future:
        """
        Request membership; the returned future resolves on acknowledgement.
        Idempotent: joined or already-requested rooms cause no network call.
        """
        if note_id in self._pending:
            return self._pending[note_id]

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(_consume)
        if note_id in self._members:
            fut.set_result(note_id)
            return fut

        self._pending[note_id] = fut
        if self._connection.is_connected:
            self._send(JOIN, note_id)
        else:
            logger.debug("rooms: join %s deferred until connected", note_id)
        return fut

    async def leave(self, note_id: str) -> None:
        """Drop the room now; tell the server only if we are connected."""
        was_member = note_id in self._members
        self._members.discard(note_id)
        pending = self._pending.pop(note_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        if not (was_member or pending is not None) or not self._connection.is_connected:
            return
        try:
            await self._connection.emit(LEAVE, {"noteId": note_id})
            logger.debug("rooms: left %s", note_id)
        except NetworkError as exc:
            logger.debug("rooms: leave %s not sent: %s", note_id, exc)

    def reset(self) -> None:
        for fut in self._pending.values():
            if not fut.done():
                fut.cancel()
        self._pending.clear()
        self._members.clear()

    def _send(self, event: str, note_id: str) -> None:
        task = asyncio.create_task(self._emit(event, note_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _emit(self, event: str, note_id: str) -> None:
        try:
            await self._connection.emit(event, {"noteId": note_id})
        except NetworkError as exc:
            # stays pending; replayed when the connection is ready again
            logger.debug("rooms: %s %s not sent: %s", event, note_id, exc)

    def _on_joined(self, data: Dict[str, Any]) -> None:
        note_id = data.get("noteId")
        fut = self._pending.pop(note_id, None)
        if fut is not None:
            self._members.add(note_id)
            if not fut.done():
                fut.set_result(note_id)
            logger.info("rooms: joined %s", note_id)
        elif note_id in self._members:
            logger.debug("rooms: rejoin of %s confirmed", note_id)
        else:
            # acknowledged after the caller abandoned the room
            self._send(LEAVE, note_id)

    def _on_error(self, data: Dict[str, Any]) -> None:
        note_id = data.get("noteId")
        message = data.get("message", "rejected")
        fut = self._pending.pop(note_id, None)
        if fut is not None and not fut.done():
            fut.set_exception(PermissionDenied(f"Cannot join {note_id}: {message}"))
        logger.warning("rooms: server error for %s: %s", note_id, message)

    def _on_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            rooms = self._members | set(self._pending)
            if rooms:
                logger.info("rooms: rejoining %d room(s)", len(rooms))
            for note_id in sorted(rooms):
                self._send(JOIN, note_id)
        elif state is ConnectionState.FAILED:
            for note_id, fut in list(self._pending.items()):
                if not fut.done():
                    fut.set_exception(ConnectionFailed(f"Join {note_id} abandoned: connection failed"))
            self._pending.clear()
