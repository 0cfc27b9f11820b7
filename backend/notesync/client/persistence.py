"""
Persistence coordinator - bridge between in-memory note state and the store.

Saves are plain asynchronous calls; callers either await them (explicit
saves, flushes) or schedule them and observe the task. Saves of one note
are serialized so they reach the server in the order they were issued.
"""

import asyncio
import logging
from typing import Dict, Set

from notesync.client.errors import NetworkError, PersistenceError, ValidationError
from notesync.client.notes_api import NotesApiClient
from notesync.client.state import EDITABLE, NotesState
from notesync.models.notes import MAX_CONTENT, MAX_TITLE, NoteOut

logger = logging.getLogger(__name__)


def validate_fields(fields: dict) -> dict:
    if not fields:
        raise ValidationError("Nothing to save")
    unknown = set(fields) - set(EDITABLE)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    for name, value in fields.items():
        if not isinstance(value, str):
            raise ValidationError(f"{name} must be a string")
    title = fields.get("title")
    if title is not None and not (1 <= len(title) <= MAX_TITLE):
        raise ValidationError(f"title must be 1-{MAX_TITLE} characters")
    if len(fields.get("content", "")) > MAX_CONTENT:
        raise ValidationError("content is too large")
    return dict(fields)


class PersistenceCoordinator:
    def __init__(self, api: NotesApiClient, state: NotesState):
        self._api = api
        self._state = state
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

    def _get_lock(self, note_id: str) -> asyncio.Lock:
        if note_id not in self._locks:
            self._locks[note_id] = asyncio.Lock()
        return self._locks[note_id]

    async def save(self, note_id: str, fields: dict) -> NoteOut:
        """
        Persist `fields` (whole-field replacement, last write wins) and
        reconcile the in-memory lists with the stored note.

        Raises ValidationError, AuthError, PermissionDenied or
        PersistenceError; transport failures surface as PersistenceError.
        """
        fields = validate_fields(fields)
        async with self._get_lock(note_id):
            try:
                note = await self._api.update_note(note_id, fields)
            except NetworkError as exc:
                raise PersistenceError(f"Saving {note_id} failed: {exc}") from exc

        self._state.apply_saved(note)
        logger.debug("saved %s (%s) as version %d", note_id, ", ".join(fields), note.version)
        return note

    def schedule_save(self, note_id: str, fields: dict) -> asyncio.Task:
        task = asyncio.create_task(self.save(note_id, fields))
        self._tasks.add(task)
        task.add_done_callback(self._save_finished)
        return task

    def _save_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("save failed: %s", exc)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
