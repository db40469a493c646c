"""Schemas for the subject catalogue."""

from datetime import datetime
from uuid import UUID

from maturamente.schemas.common import BaseSchema


class SubjectResponse(BaseSchema):
    id: UUID
    name: str
    description: str | None
    slug: str | None
    color: str
    maturita: bool
    order_index: int
    created_at: datetime


class UserSubjectResponse(SubjectResponse):
    """A subject unlocked by the caller's plan."""

    user_relation_created_at: datetime
    notes_count: int
