"""Subject catalogue endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from maturamente.dependencies import AuthUser, get_subject_service
from maturamente.schemas.common import ErrorResponse
from maturamente.schemas.subjects import SubjectResponse, UserSubjectResponse
from maturamente.services.subjects import SubjectService

router = APIRouter()

Subjects = Annotated[SubjectService, Depends(get_subject_service)]


@router.get(
    "",
    response_model=list[SubjectResponse],
    summary="All subjects, as shown on the pricing page",
)
async def list_subjects(subjects: Subjects) -> list[SubjectResponse]:
    return [SubjectResponse.model_validate(s) for s in await subjects.list_subjects()]


@router.get(
    "/{slug}",
    response_model=UserSubjectResponse,
    summary="A subject unlocked by the caller's plan",
    responses={
        401: {"model": ErrorResponse, "description": "Not signed in"},
        404: {"model": ErrorResponse, "description": "Subject not found"},
    },
)
async def get_subject(slug: str, user: AuthUser, subjects: Subjects) -> UserSubjectResponse:
    data = await subjects.get_user_subject(user.id, slug)
    return UserSubjectResponse.model_validate(data)
