from typing import Optional

from pydantic import BaseModel, Field, model_validator

from notesync.models.auth import EMAIL_PATTERN
from notesync.models.permissions import Permission

MAX_TITLE = 200
MAX_CONTENT = 500_000


class NoteCreate(BaseModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE)
    content: str = Field(default="", max_length=MAX_CONTENT)


class NoteUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=MAX_TITLE)
    content: Optional[str] = Field(default=None, max_length=MAX_CONTENT)

    @model_validator(mode="after")
    def _at_least_one_field(self):
        if self.title is None and self.content is None:
            raise ValueError("title or content is required")
        return self


class NoteOut(BaseModel):
    id: str
    owner_id: str
    title: str
    content: str
    created_at: str
    updated_at: str
    is_archived: bool = False
    version: int = 1
    permission: Optional[Permission] = None


class Collaborator(BaseModel):
    user_id: str
    email: str
    display_name: str
    permission: Permission


class NoteDetails(NoteOut):
    collaborators: list[Collaborator] = []


class NotesList(BaseModel):
    own: list[NoteOut] = []
    shared: list[NoteOut] = []


class ShareRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    permission: Permission


class GrantOut(BaseModel):
    note_id: str
    user_id: str
    permission: Permission
    granted_by: str
    granted_at: str


class VersionOut(BaseModel):
    note_id: str
    version_number: int
    title: str
    content: str
    created_by: str
    created_at: str
