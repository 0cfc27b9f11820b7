"""Async REST client for the notes API."""

import logging
from typing import Any, List, Optional

import httpx

from notesync.client.errors import AuthError, NetworkError, PermissionDenied, PersistenceError, ValidationError
from notesync.models.notes import GrantOut, NoteDetails, NoteOut, NotesList, VersionOut
from notesync.models.permissions import Permission

logger = logging.getLogger(__name__)


def _detail(response: httpx.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return str(detail) if detail else response.reason_phrase


class NotesApiClient:
    """
    Every request carries the bearer credential. HTTP failures are mapped
    onto the client error taxonomy so callers never see httpx exceptions.
    """

    def __init__(self, base_url: str, credential: str, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._credential = credential

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                headers={"Authorization": f"Bearer {self._credential}"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        status = response.status_code
        if status == 401:
            raise AuthError("Please sign in again")
        if status == 403:
            raise PermissionDenied(_detail(response))
        if status in (400, 422):
            raise ValidationError(_detail(response))
        if status >= 400:
            raise PersistenceError(f"{method} {path}: {status} {_detail(response)}")
        if status == 204:
            return None
        return response.json()

    async def list_notes(self) -> NotesList:
        return NotesList(**await self._request("GET", "/notes"))

    async def get_note(self, note_id: str) -> NoteDetails:
        return NoteDetails(**await self._request("GET", f"/notes/{note_id}"))

    async def create_note(self, title: str, content: str = "") -> NoteOut:
        return NoteOut(**await self._request("POST", "/notes", {"title": title, "content": content}))

    async def update_note(self, note_id: str, fields: dict) -> NoteOut:
        return NoteOut(**await self._request("PUT", f"/notes/{note_id}", fields))

    async def delete_note(self, note_id: str, permanent: bool = False) -> None:
        path = f"/notes/{note_id}/permanent" if permanent else f"/notes/{note_id}"
        await self._request("DELETE", path)

    async def share_note(self, note_id: str, email: str, permission: Permission) -> GrantOut:
        body = {"email": email, "permission": Permission(permission).value}
        return GrantOut(**await self._request("POST", f"/notes/{note_id}/share", body))

    async def revoke_access(self, note_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/notes/{note_id}/share/{user_id}")

    async def list_versions(self, note_id: str) -> List[VersionOut]:
        return [VersionOut(**v) for v in await self._request("GET", f"/notes/{note_id}/versions")]

    async def get_version(self, note_id: str, version_number: int) -> VersionOut:
        return VersionOut(**await self._request("GET", f"/notes/{note_id}/versions/{int(version_number)}"))
