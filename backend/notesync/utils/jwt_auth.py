"""
Bearer credentials for REST and the real-time socket.

Tokens are HS256 JWTs whose `sub` is the user id. Settings are read from the
environment on every call so a rotated secret or lifetime applies at once.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

bearer = HTTPBearer(auto_error=False)

DEFAULT_LIFETIME_MINUTES = 60


@dataclass(frozen=True)
class TokenSettings:
    secret: str
    algorithm: str
    lifetime: timedelta

    @classmethod
    def from_env(cls) -> "TokenSettings":
        secret = os.getenv("JWT_SECRET", "")
        if not secret:
            raise RuntimeError("JWT_SECRET is not set")
        try:
            minutes = int(os.getenv("JWT_EXP_MINUTES", str(DEFAULT_LIFETIME_MINUTES)))
        except ValueError:
            minutes = DEFAULT_LIFETIME_MINUTES
        return cls(secret, os.getenv("JWT_ALGORITHM", "HS256"), timedelta(minutes=minutes))


def create_access_token(subject: str) -> str:
    cfg = TokenSettings.from_env()
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        "iat": int(issued.timestamp()),
        "exp": int((issued + cfg.lifetime).timestamp()),
    }
    return jwt.encode(claims, cfg.secret, algorithm=cfg.algorithm)


def authenticate_token(token: Optional[str]) -> Optional[str]:
    """
    Resolve a bearer credential to a user id, or None if it is absent,
    malformed, expired or has no subject.
    """
    if not token:
        return None
    cfg = TokenSettings.from_env()
    try:
        claims = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except JWTError:
        return None
    sub = claims.get("sub")
    return str(sub) if sub else None


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    if creds is None or creds.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing credentials")

    user_id = authenticate_token(creds.credentials)
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return user_id
