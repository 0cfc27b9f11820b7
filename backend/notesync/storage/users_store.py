from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from notesync.storage.notes_store import _atomic_write_json, _safe_component


def _safe_user_dir(base_dir: Path, user_id: str) -> Path:
    return base_dir / "users" / _safe_component(user_id, "user_id")


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    email: str
    display_name: str
    hashed_password: str
    created_at: str

    def public(self) -> dict:
        return {"user_id": self.user_id, "email": self.email, "display_name": self.display_name}


class UsersStore:
    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    def _user_path(self, user_id: str) -> Path:
        return _safe_user_dir(self.base_dir, user_id) / "user.json"

    def get(self, user_id: str) -> Optional[UserRecord]:
        p = self._user_path(user_id)
        if not p.exists():
            return None
        return UserRecord(**json.loads(p.read_text(encoding="utf-8")))

    def find_by_email(self, email: str) -> Optional[UserRecord]:
        # linear scan over users/*/user.json
        wanted = _normalize_email(email)
        users_dir = self.base_dir / "users"
        if not users_dir.exists():
            return None
        for p in users_dir.glob("*/user.json"):
            raw = json.loads(p.read_text(encoding="utf-8"))
            if raw.get("email") == wanted:
                return UserRecord(**raw)
        return None

    def create(self, email: str, display_name: str, hashed_password: str) -> UserRecord:
        if self.find_by_email(email) is not None:
            raise FileExistsError("User exists")

        rec = UserRecord(
            user_id=uuid.uuid4().hex,
            email=_normalize_email(email),
            display_name=display_name,
            hashed_password=hashed_password,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        _atomic_write_json(self._user_path(rec.user_id), asdict(rec))
        return rec
