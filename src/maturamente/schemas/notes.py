"""Schemas for note favorites, signed links and study sessions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from maturamente.schemas.common import BaseSchema


class FavoriteNoteRequest(BaseSchema):
    note_id: UUID
    is_favorite: bool


class SignedUrlRequest(BaseSchema):
    """Identify a note by id or by its storage path."""

    note_id: UUID | None = None
    storage_path: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def require_note_reference(self) -> SignedUrlRequest:
        if self.note_id is None and self.storage_path is None:
            msg = "Note ID or storage path is required"
            raise ValueError(msg)
        return self


class SignedUrlResponse(BaseSchema):
    signed_url: str
    message: str = "Signed URL generated successfully"
    expires_in: int


class StartStudySessionRequest(BaseSchema):
    note_id: UUID


class StudySessionStartedResponse(BaseSchema):
    session_id: UUID
    started_at: datetime


class StudySessionUpdatedResponse(BaseSchema):
    session_id: UUID
    last_active_at: datetime
    action: str
