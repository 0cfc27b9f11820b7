"""
Audit trail of note activity.

Each acting user gets an append-only JSON-lines file under
users/<user_id>/events/. Real-time relay traffic is not logged, only the
REST operations that change stored state or access.
"""

import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

from notesync.storage.users_store import _safe_user_dir


class EventType(str, Enum):
    NOTE_CREATED = "NOTE_CREATED"
    NOTE_UPDATED = "NOTE_UPDATED"
    NOTE_ARCHIVED = "NOTE_ARCHIVED"
    NOTE_DELETED = "NOTE_DELETED"
    SHARE_GRANTED = "SHARE_GRANTED"
    SHARE_REVOKED = "SHARE_REVOKED"


def _activity_log(base_dir: Path, user_id: str) -> Path:
    return _safe_user_dir(base_dir, user_id) / "events" / "events.log"


@dataclass(frozen=True)
class Event:
    event_type: EventType
    user_id: str
    note_id: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    def record(self) -> dict[str, Any]:
        return {
            "event_id": uuid.uuid4().hex,
            "event_type": EventType(self.event_type).value,
            "ts": datetime.now(timezone.utc).isoformat(),
            "user_id": self.user_id,
            "note_id": self.note_id,
            "meta": dict(self.meta),
        }


class EventLog:
    def __init__(self, base_dir: Path):
        self.base_dir = base_dir

    def emit(self, event: Event) -> dict[str, Any]:
        rec = event.record()
        path = _activity_log(self.base_dir, event.user_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        # one fsynced line per event
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
            f.flush()
            os.fsync(f.fileno())
        return rec

    def read(self, user_id: str, types: Optional[Iterable[EventType]] = None) -> list[dict[str, Any]]:
        """Events of `user_id`, oldest first, optionally limited to some types."""
        path = _activity_log(self.base_dir, user_id)
        if not path.exists():
            return []
        wanted = {EventType(t).value for t in types} if types is not None else None
        out = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            rec = json.loads(line)
            if wanted is None or rec["event_type"] in wanted:
                out.append(rec)
        return out
