import json
import os
import shutil
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_component(value: str, what: str = "id") -> str:
    # ids end up in file names; reject anything that could escape the data dir
    if not value or any(ch in value for ch in "/\\") or ".." in value:
        raise ValueError(f"Invalid {what}")
    return value


def _notes_dir(base_dir: Path) -> Path:
    return base_dir / "notes"


def _note_path(base_dir: Path, note_id: str) -> Path:
    return _notes_dir(base_dir) / f"{_safe_component(note_id, 'note_id')}.json"


def _versions_dir(base_dir: Path, note_id: str) -> Path:
    return base_dir / "versions" / _safe_component(note_id, "note_id")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # concurrent writers of one file each get their own temp file
    tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
    with tmp_path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
        f.flush()
        os.fsync(f.fileno())
    tmp_path.replace(path)


class NoteLocks:
    """One lock per note id, held across a read-modify-write of its files."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def __call__(self, note_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(note_id, threading.Lock())


@dataclass(frozen=True)
class Note:
    id: str
    owner_id: str
    title: str
    content: str
    created_at: str
    updated_at: str
    is_archived: bool = False
    version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_archived": self.is_archived,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Note":
        return cls(
            id=raw["id"],
            owner_id=raw["owner_id"],
            title=raw["title"],
            content=raw["content"],
            created_at=raw["created_at"],
            updated_at=raw["updated_at"],
            is_archived=bool(raw.get("is_archived", False)),
            version=int(raw.get("version", 1)),
        )


@dataclass(frozen=True)
class NoteVersion:
    note_id: str
    version_number: int
    title: str
    content: str
    created_by: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "note_id": self.note_id,
            "version_number": self.version_number,
            "title": self.title,
            "content": self.content,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }


class NotesStore:
    """
    File-backed note storage.

    Updates replace whole fields and never check versions: the last write to
    reach the store is the stored state. Every create/update also writes a
    snapshot into the note's version history.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self._lock = NoteLocks()

    def create_note(self, owner_id: str, title: str, content: str) -> Note:
        now = _utc_now_iso()
        note = Note(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )
        _atomic_write_json(_note_path(self.base_dir, note.id), note.to_dict())
        self._write_version(note, created_by=owner_id)
        return note

    def get_note(self, note_id: str) -> Optional[Note]:
        path = _note_path(self.base_dir, note_id)
        if not path.exists():
            return None
        return Note.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def list_notes(self) -> list[Note]:
        notes_dir = _notes_dir(self.base_dir)
        if not notes_dir.exists():
            return []
        out: list[Note] = []
        for p in sorted(notes_dir.glob("*.json")):
            try:
                out.append(Note.from_dict(json.loads(p.read_text(encoding="utf-8"))))
            except (ValueError, KeyError):
                # half-written or foreign files are not notes
                continue
        return out

    def list_owned(self, owner_id: str, include_archived: bool = False) -> list[Note]:
        return [
            n for n in self.list_notes()
            if n.owner_id == owner_id and (include_archived or not n.is_archived)
        ]

    def update_note(
        self,
        note_id: str,
        updated_by: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Optional[Note]:
        # concurrent saves are serialized; each gets its own version number
        with self._lock(note_id):
            current = self.get_note(note_id)
            if current is None:
                return None

            changes: dict[str, Any] = {"updated_at": _utc_now_iso(), "version": current.version + 1}
            if title is not None:
                changes["title"] = title
            if content is not None:
                changes["content"] = content
            updated = replace(current, **changes)

            _atomic_write_json(_note_path(self.base_dir, note_id), updated.to_dict())
            self._write_version(updated, created_by=updated_by)
        return updated

    def set_archived(self, note_id: str, archived: bool) -> Optional[Note]:
        with self._lock(note_id):
            current = self.get_note(note_id)
            if current is None:
                return None
            updated = replace(current, is_archived=archived, updated_at=_utc_now_iso())
            _atomic_write_json(_note_path(self.base_dir, note_id), updated.to_dict())
        return updated

    def delete_note(self, note_id: str) -> bool:
        path = _note_path(self.base_dir, note_id)
        with self._lock(note_id):
            if not path.exists():
                return False
            path.unlink()
            shutil.rmtree(_versions_dir(self.base_dir, note_id), ignore_errors=True)
        return True

    # version history

    def _write_version(self, note: Note, created_by: str) -> NoteVersion:
        version = NoteVersion(
            note_id=note.id,
            version_number=note.version,
            title=note.title,
            content=note.content,
            created_by=created_by,
            created_at=note.updated_at,
        )
        path = _versions_dir(self.base_dir, note.id) / f"{note.version}.json"
        _atomic_write_json(path, version.to_dict())
        return version

    def list_versions(self, note_id: str) -> list[NoteVersion]:
        vdir = _versions_dir(self.base_dir, note_id)
        if not vdir.exists():
            return []
        out = [NoteVersion(**json.loads(p.read_text(encoding="utf-8"))) for p in vdir.glob("*.json")]
        out.sort(key=lambda v: v.version_number, reverse=True)
        return out

    def get_version(self, note_id: str, version_number: int) -> Optional[NoteVersion]:
        path = _versions_dir(self.base_dir, note_id) / f"{int(version_number)}.json"
        if not path.exists():
            return None
        return NoteVersion(**json.loads(path.read_text(encoding="utf-8")))
