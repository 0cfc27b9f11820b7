"""
Outbound update throttler.

A local edit is applied to the in-memory state at once, then travels two
independent paths:

* the network, through a leading+trailing throttle per (note, field);
* the store, through a debounce per note for content, or immediately for
  titles, whose failures must reach the user.

Both paths read the latest pending edit when they fire, never the value
captured when the timer was armed, so intermediate keystrokes coalesce.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from notesync.client.connection import ConnectionManager, ConnectionState
from notesync.client.errors import NetworkError, PermissionDenied, PersistenceError, SyncError, ValidationError
from notesync.client.persistence import PersistenceCoordinator
from notesync.client.rooms import RoomMembershipTracker
from notesync.client.settings import ClientSettings
from notesync.client.state import NotesState
from notesync.client.timing import Debounce, Throttle

logger = logging.getLogger(__name__)

UPDATE = "note:update"

ErrorCallback = Callable[[str, SyncError], None]
Key = Tuple[str, str]


@dataclass(frozen=True)
class PendingEdit:
    note_id: str
    user_id: str
    content: Optional[str] = None
    title: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)

    @property
    def field_name(self) -> str:
        return "content" if self.content is not None else "title"

    @property
    def value(self) -> str:
        return self.content if self.content is not None else self.title

    def payload(self) -> dict:
        return {"noteId": self.note_id, "userId": self.user_id, self.field_name: self.value}


class OutboundUpdateThrottler:
    def __init__(
        self,
        connection: ConnectionManager,
        rooms: RoomMembershipTracker,
        persistence: PersistenceCoordinator,
        state: NotesState,
        user_id: str,
        settings: Optional[ClientSettings] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self._connection = connection
        self._rooms = rooms
        self._persistence = persistence
        self._state = state
        self._user_id = user_id
        self.settings = settings or ClientSettings()
        self._on_error = on_error
        # latest edit not yet emitted, per (note, field)
        self._outbox: Dict[Key, PendingEdit] = {}
        # most recently submitted edit, per (note, field)
        self._latest: Dict[Key, PendingEdit] = {}
        # latest content not yet persisted, per note
        self._dirty: Dict[str, PendingEdit] = {}
        self._throttles: Dict[Key, Throttle] = {}
        self._debounces: Dict[str, Debounce] = {}
        connection.add_state_listener(self._on_state)

    def submit_edit(
        self, note_id: str, *, content: Optional[str] = None, title: Optional[str] = None
    ) -> Optional[asyncio.Task]:
        """
        Record a local edit of exactly one field. Returns the save task for
        title edits so the caller can observe failures; content saves are
        debounced and retried silently.
        """
        if (content is None) == (title is None):
            raise ValidationError("An edit carries exactly one of content or title")

        edit = PendingEdit(note_id=note_id, user_id=self._user_id, content=content, title=title)
        self._state.apply_local(note_id, **{edit.field_name: edit.value})

        key = (note_id, edit.field_name)
        self._outbox[key] = edit
        self._latest[key] = edit
        self._throttle(key).trigger()

        if content is not None:
            self._dirty[note_id] = edit
            self._debounce(note_id).trigger()
            return None
        return self._persistence.schedule_save(note_id, {"title": title})

    def has_pending(self, note_id: str) -> bool:
        return note_id in self._dirty or any(k[0] == note_id for k in self._outbox)

    def _throttle(self, key: Key) -> Throttle:
        if key not in self._throttles:
            self._throttles[key] = Throttle(self.settings.throttle_window, lambda: self._emit(key))
        return self._throttles[key]

    def _debounce(self, note_id: str) -> Debounce:
        if note_id not in self._debounces:
            self._debounces[note_id] = Debounce(self.settings.debounce_window, lambda: self._autosave(note_id))
        return self._debounces[note_id]

    def _report(self, note_id: str, exc: SyncError) -> None:
        logger.error("note %s: %s", note_id, exc)
        if self._on_error is not None:
            self._on_error(note_id, exc)

    # network path

    async def _emit(self, key: Key) -> None:
        note_id = key[0]
        if key not in self._outbox:
            return
        try:
            if not self._rooms.is_joined(note_id):
                joined = self._rooms.join(note_id)
                await asyncio.wait([joined])
                if joined.cancelled():
                    # the room was left before the join completed
                    self._outbox.pop(key, None)
                    return
                joined.result()

            edit = self._outbox.pop(key, None)
            if edit is None:
                return
            try:
                await self._connection.emit(UPDATE, edit.payload())
            except NetworkError:
                # a newer edit may have gone out while this one was in flight
                if self._latest.get(key) is edit:
                    self._outbox.setdefault(key, edit)
                raise
        except PermissionDenied as exc:
            self._outbox.pop(key, None)
            self._report(note_id, exc)
        except NetworkError as exc:
            logger.info("update for %s held until reconnect: %s", note_id, exc)

    def _on_state(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            for key in list(self._outbox):
                self._throttle(key).trigger()

    # storage path

    async def _autosave(self, note_id: str) -> None:
        edit = self._dirty.pop(note_id, None)
        if edit is None:
            return
        try:
            await self._persistence.save(note_id, {"content": edit.content})
        except PersistenceError as exc:
            # state is already correct locally; the next debounce cycle retries
            self._dirty.setdefault(note_id, edit)
            logger.warning("autosave of %s failed, will retry: %s", note_id, exc)
        except SyncError as exc:
            self._report(note_id, exc)

    async def flush(self, note_id: str) -> None:
        """
        Emit and persist whatever is pending for the note right now.
        Persistence failures are raised to the caller.
        """
        if self._connection.is_connected:
            for name in ("content", "title"):
                throttle = self._throttles.get((note_id, name))
                if throttle is not None:
                    await throttle.flush()

        debounce = self._debounces.get(note_id)
        if debounce is not None:
            debounce.cancel()
            await debounce.drain()

        edit = self._dirty.pop(note_id, None)
        if edit is None:
            return
        try:
            await self._persistence.save(note_id, {"content": edit.content})
        except SyncError:
            self._dirty.setdefault(note_id, edit)
            raise

    def discard(self, note_id: str) -> None:
        for key in [k for k in self._throttles if k[0] == note_id]:
            self._throttles.pop(key).cancel()
            self._outbox.pop(key, None)
            self._latest.pop(key, None)
        debounce = self._debounces.pop(note_id, None)
        if debounce is not None:
            debounce.cancel()
        self._dirty.pop(note_id, None)

    def dispose(self) -> None:
        for note_id in {k[0] for k in self._throttles} | set(self._debounces):
            self.discard(note_id)
        self._connection.remove_state_listener(self._on_state)
