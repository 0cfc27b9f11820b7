"""
In-memory note lists shared by every view of the client.

Local edits are applied optimistically. A field edited locally keeps its
local value until a save returns that same value, so a slow save response
never rolls the views back over newer keystrokes. Remote updates replace the
field outright (last received wins).
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from notesync.models.notes import NoteDetails, NoteOut, NotesList

EDITABLE = ("title", "content")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotesState:
    def __init__(self):
        self.own: List[NoteOut] = []
        self.shared: List[NoteOut] = []
        self.current: Optional[NoteDetails] = None
        # (note_id, field) -> latest local value not yet confirmed by a save
        self._local: Dict[Tuple[str, str], str] = {}

    def replace_lists(self, lists: NotesList) -> None:
        self.own = list(lists.own)
        self.shared = list(lists.shared)
        for note in self.own + self.shared:
            self._overlay_local(note.id)

    def find(self, note_id: str) -> Optional[NoteOut]:
        if self.current is not None and self.current.id == note_id:
            return self.current
        for note in self.own + self.shared:
            if note.id == note_id:
                return note
        return None

    def set_current(self, note: Optional[NoteDetails]) -> None:
        self.current = note
        if note is not None:
            self._overlay_local(note.id)

    def add(self, note: NoteOut) -> None:
        self.own = [note] + [n for n in self.own if n.id != note.id]

    def remove(self, note_id: str) -> None:
        self.own = [n for n in self.own if n.id != note_id]
        self.shared = [n for n in self.shared if n.id != note_id]
        if self.current is not None and self.current.id == note_id:
            self.current = None
        for key in [k for k in self._local if k[0] == note_id]:
            del self._local[key]

    def pending_local(self, note_id: str, field: str) -> Optional[str]:
        return self._local.get((note_id, field))

    def _patch(self, note_id: str, changes: dict) -> None:
        self.own = [n.model_copy(update=changes) if n.id == note_id else n for n in self.own]
        self.shared = [n.model_copy(update=changes) if n.id == note_id else n for n in self.shared]
        if self.current is not None and self.current.id == note_id:
            self.current = self.current.model_copy(update=changes)

    def _overlay_local(self, note_id: str) -> None:
        changes = {f: v for (nid, f), v in self._local.items() if nid == note_id}
        if changes:
            self._patch(note_id, changes)

    def apply_local(self, note_id: str, **fields: str) -> None:
        for name, value in fields.items():
            if name not in EDITABLE:
                raise KeyError(name)
            self._local[(note_id, name)] = value
        self._patch(note_id, dict(fields, updated_at=_utc_now_iso()))

    def apply_saved(self, note: NoteOut) -> None:
        changes = {"updated_at": note.updated_at, "version": note.version, "is_archived": note.is_archived}
        for name in EDITABLE:
            saved = getattr(note, name)
            local = self._local.get((note.id, name))
            if local is None or local == saved:
                self._local.pop((note.id, name), None)
                changes[name] = saved
        self._patch(note.id, changes)

    def apply_remote(self, note_id: str, **fields: str) -> None:
        for name in fields:
            self._local.pop((note_id, name), None)
        self._patch(note_id, dict(fields, updated_at=_utc_now_iso()))
