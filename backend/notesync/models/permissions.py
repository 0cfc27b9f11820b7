from __future__ import annotations

from enum import Enum


class Permission(str, Enum):
    """Access level on a note. Each level includes the ones below it."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def allows(self, required: "Permission") -> bool:
        return self.rank >= required.rank


_RANKS = {Permission.READ: 1, Permission.WRITE: 2, Permission.ADMIN: 3}
