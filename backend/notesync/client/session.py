"""
Client façade wiring the sync components to one editing surface.

    client = CollaborationClient(api_url, socket_url, user_id, token)
    await client.start()
    note = await client.open_note(note_id, surface)
    client.local_content_changed("<p>hello</p>")
    await client.close_note()
    await client.dispose()
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from notesync.client.connection import ConnectionManager, ConnectionState
from notesync.client.errors import ConnectionFailed, SyncError
from notesync.client.inbound import EditingSurface, InboundUpdateDispatcher
from notesync.client.notes_api import NotesApiClient
from notesync.client.outbound import OutboundUpdateThrottler
from notesync.client.persistence import PersistenceCoordinator
from notesync.client.rooms import RoomMembershipTracker
from notesync.client.settings import ClientSettings
from notesync.client.state import NotesState
from notesync.client.transport import TransportFactory
from notesync.models.notes import GrantOut, NoteDetails, NoteOut, NotesList, VersionOut
from notesync.models.permissions import Permission

logger = logging.getLogger(__name__)


class CollaborationClient:
    def __init__(
        self,
        api_url: str,
        socket_url: str,
        user_id: str,
        credential: str,
        settings: Optional[ClientSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.user_id = user_id
        self.settings = settings or ClientSettings.from_env()
        self._credential = credential
        self._note_id: Optional[str] = None
        # errors the user has to see (failed title saves, lost access, ...)
        self.errors: List[SyncError] = []

        self.state = NotesState()
        self.api = NotesApiClient(api_url, credential, client=http_client)
        self.connection = ConnectionManager(socket_url, transport_factory, self.settings)
        self.rooms = RoomMembershipTracker(self.connection)
        self.persistence = PersistenceCoordinator(self.api, self.state)
        self.outbound = OutboundUpdateThrottler(
            self.connection,
            self.rooms,
            self.persistence,
            self.state,
            user_id,
            settings=self.settings,
            on_error=self._surface_error,
        )
        self.inbound = InboundUpdateDispatcher(
            self.connection, user_id, state=self.state, grace=self.settings.remote_apply_grace
        )

    @property
    def note_id(self) -> Optional[str]:
        return self._note_id

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    def _surface_error(self, note_id: str, exc: SyncError) -> None:
        self.errors.append(exc)

    async def start(self) -> bool:
        """
        Connect the real-time channel. Returns False when the retry budget
        ran out; editing and REST saves keep working without it. AuthError
        propagates.
        """
        try:
            await self.connection.connect(self._credential)
        except ConnectionFailed as exc:
            logger.warning("real-time channel unavailable: %s", exc)
            return False
        return True

    # dashboard

    async def refresh_notes(self) -> NotesList:
        lists = await self.api.list_notes()
        self.state.replace_lists(lists)
        return lists

    async def create_note(self, title: str, content: str = "") -> NoteOut:
        note = await self.api.create_note(title, content)
        self.state.add(note)
        return note

    async def delete_note(self, note_id: str, permanent: bool = False) -> None:
        if note_id == self._note_id:
            # edits to a note being deleted are not worth saving
            self.outbound.discard(note_id)
            await self.close_note()
        await self.api.delete_note(note_id, permanent=permanent)
        self.state.remove(note_id)

    async def share_note(self, note_id: str, email: str, permission: Permission) -> GrantOut:
        return await self.api.share_note(note_id, email, permission)

    async def revoke_access(self, note_id: str, user_id: str) -> None:
        await self.api.revoke_access(note_id, user_id)

    async def versions(self, note_id: str) -> List[VersionOut]:
        return await self.api.list_versions(note_id)

    async def version(self, note_id: str, version_number: int) -> VersionOut:
        return await self.api.get_version(note_id, version_number)

    # editor

    async def open_note(self, note_id: str, surface: EditingSurface) -> NoteDetails:
        if self._note_id is not None and self._note_id != note_id:
            await self.close_note()

        note = await self.api.get_note(note_id)
        self.state.set_current(note)
        self._note_id = note_id
        self.inbound.bind(note_id, surface)
        self.inbound.load(self.state.current)
        self.rooms.join(note_id)
        return self.state.current

    def local_content_changed(self, content: str) -> bool:
        """Feed an editor change; returns False if it was an echo of a remote apply."""
        if self._note_id is None or self.inbound.applying_remote:
            return False
        self.outbound.submit_edit(self._note_id, content=content)
        return True

    def local_title_changed(self, title: str) -> Optional[asyncio.Task]:
        if self._note_id is None:
            return None
        task = self.outbound.submit_edit(self._note_id, title=title)
        task.add_done_callback(self._title_saved)
        return task

    def _title_saved(self, task: asyncio.Task) -> None:
        if not task.cancelled() and isinstance(task.exception(), SyncError):
            self.errors.append(task.exception())

    async def save(self, title: Optional[str] = None, content: Optional[str] = None) -> NoteOut:
        """Explicit save of the open note; failures are raised for a manual retry."""
        if self._note_id is None:
            raise RuntimeError("No note is open")
        await self.outbound.flush(self._note_id)

        fields = {}
        if title is not None:
            fields["title"] = title
        if content is not None:
            fields["content"] = content
        if not fields:
            return self.state.find(self._note_id)
        return await self.persistence.save(self._note_id, fields)

    async def close_note(self) -> None:
        """
        Flush pending edits, then leave the room. If the flush fails the note
        stays open with its edits pending, so save() can retry them.
        """
        note_id = self._note_id
        if note_id is None:
            return
        await self.outbound.flush(note_id)

        self.inbound.unbind()
        self.outbound.discard(note_id)
        await self.rooms.leave(note_id)
        self._note_id = None
        self.state.set_current(None)

    async def dispose(self) -> None:
        try:
            await self.close_note()
        except SyncError as exc:
            logger.error("pending edits lost on dispose: %s", exc)
        self.inbound.unbind()
        self.outbound.dispose()
        self.rooms.reset()
        await self.persistence.drain()
        await self.connection.dispose()
        await self.api.aclose()
