import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from notesync.models.permissions import Permission
from notesync.storage.notes_store import Note, NoteLocks, _atomic_write_json, _safe_component


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _grants_dir(base_dir: Path) -> Path:
    return base_dir / "grants"


def _grants_path(base_dir: Path, note_id: str) -> Path:
    # data/grants/<note_id>.json -> {user_id: grant}
    return _grants_dir(base_dir) / f"{_safe_component(note_id, 'note_id')}.json"


@dataclass(frozen=True)
class Grant:
    note_id: str
    user_id: str
    permission: Permission
    granted_by: str
    granted_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "note_id": self.note_id,
            "user_id": self.user_id,
            "permission": self.permission.value,
            "granted_by": self.granted_by,
            "granted_at": self.granted_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Grant":
        return cls(
            note_id=raw["note_id"],
            user_id=raw["user_id"],
            permission=Permission(raw["permission"]),
            granted_by=raw["granted_by"],
            granted_at=raw["granted_at"],
        )


class GrantsStore:
    """
    Permission grants, one file per note holding at most one grant per user.
    The note owner never has a grant; ownership implies admin.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self._lock = NoteLocks()

    def _read(self, note_id: str) -> dict[str, dict[str, Any]]:
        p = _grants_path(self.base_dir, note_id)
        if not p.exists():
            return {}
        return json.loads(p.read_text(encoding="utf-8"))

    def grant(self, note: Note, user_id: str, permission: Permission, granted_by: str) -> Grant:
        if user_id == note.owner_id:
            raise ValueError("Owner already has full access")
        _safe_component(user_id, "user_id")

        g = Grant(
            note_id=note.id,
            user_id=user_id,
            permission=Permission(permission),
            granted_by=granted_by,
            granted_at=_utc_now_iso(),
        )
        with self._lock(note.id):
            raw = self._read(note.id)
            # upsert: re-sharing replaces the previous level
            raw[user_id] = g.to_dict()
            _atomic_write_json(_grants_path(self.base_dir, note.id), raw)
        return g

    def revoke(self, note_id: str, user_id: str) -> bool:
        with self._lock(note_id):
            raw = self._read(note_id)
            if user_id not in raw:
                return False
            del raw[user_id]
            _atomic_write_json(_grants_path(self.base_dir, note_id), raw)
        return True

    def get(self, note_id: str, user_id: str) -> Optional[Grant]:
        rec = self._read(note_id).get(user_id)
        return Grant.from_dict(rec) if rec else None

    def list_for_note(self, note_id: str) -> list[Grant]:
        return [Grant.from_dict(r) for r in self._read(note_id).values()]

    def list_for_user(self, user_id: str) -> list[Grant]:
        """
        Grants are stored per note, so this scans every grants file.
        """
        gdir = _grants_dir(self.base_dir)
        if not gdir.exists():
            return []
        out: list[Grant] = []
        for p in sorted(gdir.glob("*.json")):
            raw = json.loads(p.read_text(encoding="utf-8"))
            rec = raw.get(user_id)
            if rec:
                out.append(Grant.from_dict(rec))
        return out

    def delete_for_note(self, note_id: str) -> None:
        p = _grants_path(self.base_dir, note_id)
        with self._lock(note_id):
            if p.exists():
                p.unlink()

    def access_level(self, note: Note, user_id: str) -> Optional[Permission]:
        if note.owner_id == user_id:
            return Permission.ADMIN
        g = self.get(note.id, user_id)
        return g.permission if g else None
