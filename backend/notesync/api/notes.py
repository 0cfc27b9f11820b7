from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status

from notesync import config
from notesync.models.notes import (
    Collaborator,
    GrantOut,
    NoteCreate,
    NoteDetails,
    NoteOut,
    NotesList,
    NoteUpdate,
    ShareRequest,
    VersionOut,
)
from notesync.models.permissions import Permission
from notesync.storage.event_log import Event, EventLog, EventType
from notesync.storage.grants_store import GrantsStore
from notesync.storage.notes_store import Note, NotesStore
from notesync.storage.users_store import UsersStore
from notesync.utils.jwt_auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notes", tags=["notes"])

DATA_DIR = config.data_dir()
store = NotesStore(DATA_DIR)
grants = GrantsStore(DATA_DIR)
users = UsersStore(DATA_DIR)
event_log = EventLog(DATA_DIR)


def _load_note(note_id: str, user_id: str, required: Permission) -> tuple[Note, Permission]:
    try:
        note = store.get_note(note_id)
    except ValueError:
        note = None
    level = grants.access_level(note, user_id) if note is not None else None
    if note is None or level is None:
        # unreadable notes look exactly like missing ones
        raise HTTPException(status_code=404, detail="Note not found")
    if not level.allows(required):
        raise HTTPException(status_code=403, detail=f"{required.value} permission required")
    return note, level


def _require_owner(note: Note, user_id: str) -> None:
    if note.owner_id != user_id:
        raise HTTPException(status_code=403, detail="Only the owner can do this")


def _out(note: Note, level: Optional[Permission]) -> NoteOut:
    return NoteOut(**note.to_dict(), permission=level)


def can_access(user_id: str, note_id: str, required: Permission) -> bool:
    """Access policy shared with the real-time relay."""
    try:
        note = store.get_note(note_id)
    except ValueError:
        return False
    if note is None:
        return False
    level = grants.access_level(note, user_id)
    return level is not None and level.allows(required)


@router.get("", response_model=NotesList)
def list_notes(user_id: str = Depends(get_current_user)) -> NotesList:
    own = [_out(n, Permission.ADMIN) for n in store.list_owned(user_id)]

    shared: list[NoteOut] = []
    for g in grants.list_for_user(user_id):
        note = store.get_note(g.note_id)
        if note is None or note.is_archived:
            continue
        shared.append(_out(note, g.permission))

    own.sort(key=lambda n: n.updated_at, reverse=True)
    shared.sort(key=lambda n: n.updated_at, reverse=True)
    return NotesList(own=own, shared=shared)


@router.post("", response_model=NoteOut, status_code=201)
def create_note(payload: NoteCreate, user_id: str = Depends(get_current_user)) -> NoteOut:
    note = store.create_note(owner_id=user_id, title=payload.title, content=payload.content)
    event_log.emit(Event(event_type=EventType.NOTE_CREATED, user_id=user_id, note_id=note.id, meta={"version": note.version}))
    return _out(note, Permission.ADMIN)


@router.get("/{note_id}", response_model=NoteDetails)
def get_note(note_id: str, user_id: str = Depends(get_current_user)) -> NoteDetails:
    note, level = _load_note(note_id, user_id, Permission.READ)

    collaborators = []
    for g in grants.list_for_note(note.id):
        rec = users.get(g.user_id)
        if rec is None:
            continue
        collaborators.append(Collaborator(**rec.public(), permission=g.permission))

    return NoteDetails(**note.to_dict(), permission=level, collaborators=collaborators)


@router.put("/{note_id}", response_model=NoteOut)
def update_note(note_id: str, payload: NoteUpdate, user_id: str = Depends(get_current_user)) -> NoteOut:
    _, level = _load_note(note_id, user_id, Permission.WRITE)

    # whole-field replacement, no version check: the last save wins
    updated = store.update_note(note_id, updated_by=user_id, title=payload.title, content=payload.content)
    if updated is None:
        raise HTTPException(status_code=404, detail="Note not found")

    event_log.emit(Event(
        event_type=EventType.NOTE_UPDATED,
        user_id=user_id,
        note_id=note_id,
        meta={"version": updated.version, "fields": [f for f in ("title", "content") if getattr(payload, f) is not None]},
    ))
    return _out(updated, level)


@router.delete("/{note_id}", status_code=204)
def archive_note(note_id: str, user_id: str = Depends(get_current_user)) -> Response:
    note, _ = _load_note(note_id, user_id, Permission.READ)
    _require_owner(note, user_id)

    store.set_archived(note_id, True)
    event_log.emit(Event(event_type=EventType.NOTE_ARCHIVED, user_id=user_id, note_id=note_id))
    return Response(status_code=204)


@router.delete("/{note_id}/permanent", status_code=204)
def delete_note(note_id: str, user_id: str = Depends(get_current_user)) -> Response:
    note, _ = _load_note(note_id, user_id, Permission.READ)
    _require_owner(note, user_id)

    store.delete_note(note_id)
    grants.delete_for_note(note_id)
    event_log.emit(Event(event_type=EventType.NOTE_DELETED, user_id=user_id, note_id=note_id))
    return Response(status_code=204)


@router.post("/{note_id}/share", response_model=GrantOut, status_code=201)
def share_note(note_id: str, payload: ShareRequest, user_id: str = Depends(get_current_user)) -> GrantOut:
    note, _ = _load_note(note_id, user_id, Permission.ADMIN)

    target = users.find_by_email(payload.email)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    try:
        g = grants.grant(note, target.user_id, payload.permission, granted_by=user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Cannot share a note with its owner")

    event_log.emit(Event(
        event_type=EventType.SHARE_GRANTED,
        user_id=user_id,
        note_id=note_id,
        meta={"shared_with": target.user_id, "permission": g.permission.value},
    ))
    logger.info("note %s shared with %s (%s)", note_id, target.user_id, g.permission.value)
    return GrantOut(**g.to_dict())


@router.delete("/{note_id}/share/{target_user_id}", status_code=204)
def revoke_access(note_id: str, target_user_id: str, user_id: str = Depends(get_current_user)) -> Response:
    _load_note(note_id, user_id, Permission.ADMIN)

    if not grants.revoke(note_id, target_user_id):
        raise HTTPException(status_code=404, detail="Grant not found")

    event_log.emit(Event(event_type=EventType.SHARE_REVOKED, user_id=user_id, note_id=note_id, meta={"revoked": target_user_id}))
    return Response(status_code=204)


@router.get("/{note_id}/versions", response_model=list[VersionOut])
def list_versions(note_id: str, user_id: str = Depends(get_current_user)) -> list[VersionOut]:
    _load_note(note_id, user_id, Permission.READ)
    return [VersionOut(**v.to_dict()) for v in store.list_versions(note_id)]


@router.get("/{note_id}/versions/{version_number}", response_model=VersionOut)
def get_version(note_id: str, version_number: int, user_id: str = Depends(get_current_user)) -> VersionOut:
    _load_note(note_id, user_id, Permission.READ)
    v = store.get_version(note_id, version_number)
    if v is None:
        raise HTTPException(status_code=404, detail="Version not found")
    return VersionOut(**v.to_dict())
