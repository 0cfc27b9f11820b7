"""Password hashing for the register/login flow.

bcrypt via passlib's CryptContext, with pbkdf2_sha256 as a fallback when the
bcrypt backend cannot be loaded. `BCRYPT_ROUNDS` tunes the cost; tests set it
low to keep registration fast.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from passlib.context import CryptContext

logger = logging.getLogger(__name__)


def _rounds() -> Optional[int]:
    raw = os.environ.get("BCRYPT_ROUNDS")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _build_context() -> CryptContext:
    rounds = _rounds()
    try:
        ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", **({"bcrypt__rounds": rounds} if rounds else {}))
        ctx.hash("backend-check")
        return ctx
    except Exception as exc:
        logger.warning("bcrypt backend unavailable, falling back to pbkdf2_sha256: %s", exc)
        return CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


pwd_context = _build_context()


def hash_password(plain: str) -> str:
    if plain is None:
        raise ValueError("Password must not be None")
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if `plain` matches the stored hash; malformed hashes never match."""
    if plain is None or hashed is None:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False
