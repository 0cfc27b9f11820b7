from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, status

from notesync.api import notes
from notesync.realtime.relay import RoomRelay
from notesync.utils.jwt_auth import authenticate_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

relay = RoomRelay(access_policy=notes.can_access)


def _handshake_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value
    return None


@router.websocket("/ws")
async def collab_socket(websocket: WebSocket, token: Optional[str] = None):
    """Real-time channel. The credential is checked once, at handshake."""
    user_id = authenticate_token(_handshake_token(websocket, token))
    if user_id is None:
        logger.info("rejecting socket without a valid credential")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await relay.serve(websocket, user_id)
