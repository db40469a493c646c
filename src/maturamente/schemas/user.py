"""Schemas for the signed-in user's progress, subscription and access."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from maturamente.schemas.common import BaseSchema


class CompletionStatusResponse(BaseSchema):
    is_completed: bool


class CompletionBulkResponse(BaseSchema):
    completed_topics: list[UUID]
    completed_subtopics: list[UUID]


class SubscriptionStatusResponse(BaseSchema):
    is_active: bool
    is_past_due: bool
    is_canceled: bool
    will_cancel_at_period_end: bool
    current_period_end: datetime | None
    subject_count: int
    price: float


class SubjectAccessResponse(BaseSchema):
    has_access: bool
    subjects_count: int
    max_subjects: int
    available_slots: int
    selected_subjects: list[str]


class UpdateProfileRequest(BaseSchema):
    username: str | None = Field(default=None, max_length=50)
    full_name: str | None = Field(default=None, max_length=255)


class CheckUsernameResponse(BaseSchema):
    has_username: bool


class DeleteAccountResponse(BaseSchema):
    message: str
    should_logout: bool = True
