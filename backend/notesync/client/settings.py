from __future__ import annotations

import os
from dataclasses import dataclass


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class ClientSettings:
    """Timing knobs of the sync core, in seconds."""

    throttle_window: float = 0.3
    debounce_window: float = 1.0
    reconnect_delay: float = 2.0
    max_reconnect_attempts: int = 5
    connect_timeout: float = 10.0
    remote_apply_grace: float = 0.3

    @classmethod
    def from_env(cls) -> "ClientSettings":
        return cls(
            throttle_window=_float_env("NOTESYNC_THROTTLE_WINDOW", cls.throttle_window),
            debounce_window=_float_env("NOTESYNC_DEBOUNCE_WINDOW", cls.debounce_window),
            reconnect_delay=_float_env("NOTESYNC_RECONNECT_DELAY", cls.reconnect_delay),
            max_reconnect_attempts=int(_float_env("NOTESYNC_MAX_RECONNECT_ATTEMPTS", cls.max_reconnect_attempts)),
            connect_timeout=_float_env("NOTESYNC_CONNECT_TIMEOUT", cls.connect_timeout),
            remote_apply_grace=_float_env("NOTESYNC_REMOTE_APPLY_GRACE", cls.remote_apply_grace),
        )
