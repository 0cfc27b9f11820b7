"""
Inbound update dispatcher.

Remote updates reach the editing surface through one apply path. Events
from the local user (self-echoes) and for other notes are dropped. Events
that arrive before the previous one was applied are coalesced per field, so
only the most recently received content and title are applied.

While remote content is being applied the dispatcher reports
`applying_remote`; the flag outlives the apply by a short grace period
because loading content into an editor can fire its change callbacks, and
those must not be sent back out as local edits.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from notesync.client.connection import ConnectionManager
from notesync.client.state import NotesState
from notesync.models.notes import NoteOut

logger = logging.getLogger(__name__)

UPDATED = "note-updated"


class EditingSurface(Protocol):
    def set_content(self, serialized: str) -> None: ...

    def set_title(self, title: str) -> None: ...


@dataclass(frozen=True)
class RemoteUpdateEvent:
    note_id: str
    user_id: str
    content: Optional[str] = None
    title: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "RemoteUpdateEvent":
        return cls(
            note_id=str(data.get("noteId", "")),
            user_id=str(data.get("userId", "")),
            content=data.get("content"),
            title=data.get("title"),
        )


class InboundUpdateDispatcher:
    def __init__(
        self,
        connection: ConnectionManager,
        user_id: str,
        state: Optional[NotesState] = None,
        grace: float = 0.3,
    ):
        self._connection = connection
        self.user_id = user_id
        self._state = state
        self.grace = grace
        self._note_id: Optional[str] = None
        self._surface: Optional[EditingSurface] = None
        self._latest_content: Optional[str] = None
        self._latest_title: Optional[str] = None
        self._apply_handle: Optional[asyncio.Handle] = None
        self._clear_handle: Optional[asyncio.TimerHandle] = None
        self._applying = False

    @property
    def note_id(self) -> Optional[str]:
        return self._note_id

    @property
    def applying_remote(self) -> bool:
        return self._applying

    def bind(self, note_id: str, surface: EditingSurface) -> None:
        """Route remote updates of `note_id` to `surface`."""
        self._drop_pending()
        self._note_id = note_id
        self._surface = surface
        # on() replaces; rebinding never stacks handlers
        self._connection.on(UPDATED, self._on_note_updated)

    def unbind(self) -> None:
        self._drop_pending()
        self._connection.off(UPDATED)
        self._note_id = None
        self._surface = None

    def load(self, note: NoteOut) -> None:
        """Show freshly fetched note content without it counting as a local edit."""
        if self._surface is None or note.id != self._note_id:
            return
        self._surface.set_title(note.title)
        self._apply_content(note.content)

    def _drop_pending(self) -> None:
        if self._apply_handle is not None:
            self._apply_handle.cancel()
            self._apply_handle = None
        self._latest_content = None
        self._latest_title = None

    def _on_note_updated(self, data: Dict[str, Any]) -> None:
        event = RemoteUpdateEvent.from_payload(data)
        if event.user_id == self.user_id:
            logger.debug("inbound: ignoring self-echo for %s", event.note_id)
            return
        if self._note_id is None or event.note_id != self._note_id:
            logger.debug("inbound: ignoring update for %s (open: %s)", event.note_id, self._note_id)
            return
        if event.content is None and event.title is None:
            return

        if event.content is not None:
            self._latest_content = event.content
        if event.title is not None:
            self._latest_title = event.title
        if self._apply_handle is None:
            self._apply_handle = asyncio.get_running_loop().call_soon(self._apply_latest)

    def _apply_latest(self) -> None:
        self._apply_handle = None
        content, title = self._latest_content, self._latest_title
        self._latest_content = self._latest_title = None
        if self._surface is None or self._note_id is None:
            return

        if title is not None:
            self._surface.set_title(title)
            if self._state is not None:
                self._state.apply_remote(self._note_id, title=title)
        if content is not None:
            self._apply_content(content)
            if self._state is not None:
                self._state.apply_remote(self._note_id, content=content)

    def _apply_content(self, content: str) -> None:
        self._applying = True
        try:
            self._surface.set_content(content)
        finally:
            if self._clear_handle is not None:
                self._clear_handle.cancel()
            self._clear_handle = asyncio.get_running_loop().call_later(self.grace, self._clear_applying)

    def _clear_applying(self) -> None:
        self._clear_handle = None
        self._applying = False
