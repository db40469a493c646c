"""Note endpoints: favorites, signed download links and study sessions."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from maturamente.core.exceptions import ValidationError
from maturamente.dependencies import (
    AuthUser,
    get_note_service,
    get_study_session_service,
)
from maturamente.schemas.common import ErrorResponse, SuccessResponse
from maturamente.schemas.notes import (
    FavoriteNoteRequest,
    SignedUrlRequest,
    SignedUrlResponse,
    StartStudySessionRequest,
    StudySessionStartedResponse,
    StudySessionUpdatedResponse,
)
from maturamente.services.notes import NoteService
from maturamente.services.study_sessions import SessionAction, StudySessionService

router = APIRouter()

Notes = Annotated[NoteService, Depends(get_note_service)]
StudySessions = Annotated[StudySessionService, Depends(get_study_session_service)]

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


@router.post(
    "/favorite",
    response_model=SuccessResponse,
    summary="Add or remove a note from favorites",
    responses={401: {"model": ErrorResponse, "description": "Not signed in"}},
)
async def set_favorite(
    body: FavoriteNoteRequest, user: AuthUser, notes: Notes
) -> SuccessResponse:
    await notes.set_favorite(user.id, body.note_id, body.is_favorite)
    return SuccessResponse()


@router.post(
    "/signed-url",
    response_model=SignedUrlResponse,
    summary="Get a signed download URL for a note",
    responses={
        401: {"model": ErrorResponse, "description": "Not signed in"},
        403: {"model": ErrorResponse, "description": "No access to the subject"},
        404: {"model": ErrorResponse, "description": "Note not found"},
        502: {"model": ErrorResponse, "description": "Storage error"},
    },
)
async def signed_url(
    body: SignedUrlRequest, user: AuthUser, notes: Notes
) -> SignedUrlResponse:
    """Links are reused from the cache until shortly before they expire."""
    link = await notes.signed_link(
        user.id, note_id=body.note_id, storage_path=body.storage_path
    )
    return SignedUrlResponse(signed_url=link.signed_url, expires_in=link.expires_in)


# =============================================================================
# Study Sessions
# =============================================================================


@router.post(
    "/study-session",
    response_model=StudySessionStartedResponse,
    summary="Start or resume a study session on a note",
    responses={401: {"model": ErrorResponse, "description": "Not signed in"}},
)
async def start_study_session(
    body: StartStudySessionRequest, user: AuthUser, sessions: StudySessions
) -> StudySessionStartedResponse:
    study_session = await sessions.start(user.id, body.note_id)
    return StudySessionStartedResponse(
        session_id=study_session.id, started_at=study_session.started_at
    )


@router.get(
    "/study-session/stats",
    summary="Study time statistics",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid stats type"},
        401: {"model": ErrorResponse, "description": "Not signed in"},
    },
)
async def study_session_stats(
    user: AuthUser,
    sessions: StudySessions,
    stats_type: Annotated[str, Query(alias="type")] = "overall",
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> Any:
    return await sessions.stats(user.id, stats_type, limit=limit, days=days)


async def read_action(request: Request) -> str | None:
    """Extract ``action`` from a JSON or form-encoded body.

    Clients send pings with fetch (JSON) and the final ``end`` with
    ``navigator.sendBeacon``, which posts form data.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        action = form.get("action")
        return action if isinstance(action, str) else None

    raw = await request.body()
    if not raw:
        return None
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Invalid request body") from None
    return data.get("action") if isinstance(data, dict) else None


@router.patch(
    "/study-session/{session_id}",
    response_model=StudySessionUpdatedResponse,
    summary="Record activity on a study session",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid action"},
        401: {"model": ErrorResponse, "description": "Not signed in"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def update_study_session(
    session_id: UUID,
    request: Request,
    user: AuthUser,
    sessions: StudySessions,
) -> StudySessionUpdatedResponse:
    raw_action = await read_action(request)
    try:
        action = SessionAction(raw_action)
    except ValueError:
        raise ValidationError(
            "Invalid action. Must be 'ping' or 'end'", field="action"
        ) from None

    study_session = await sessions.touch(user.id, session_id, action)
    return StudySessionUpdatedResponse(
        session_id=study_session.id,
        last_active_at=study_session.last_active_at,
        action=action.value,
    )
