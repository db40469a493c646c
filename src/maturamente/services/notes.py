"""Note favorites and signed download links."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog

from maturamente.core.exceptions import (
    NoteNotFoundError,
    StorageServiceError,
    SubjectAccessDeniedError,
    ValidationError,
)
from maturamente.models.relations import ContentKind
from maturamente.repositories.billing import SubjectAccessRepository
from maturamente.repositories.content import NoteRepository
from maturamente.services.relations import RelationService
from maturamente.services.storage import StorageError, StorageService

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class NoteLink:
    signed_url: str
    expires_in: int


class NoteService:
    """Operations on notes on behalf of a user."""

    def __init__(
        self,
        relations: RelationService,
        note_repo: NoteRepository,
        access_repo: SubjectAccessRepository,
        storage: StorageService,
    ) -> None:
        self.relations = relations
        self.note_repo = note_repo
        self.access_repo = access_repo
        self.storage = storage

    async def set_favorite(self, user_id: UUID, note_id: UUID, favorite: bool) -> None:
        """Add or remove the note from the user's favorites.

        Both directions are idempotent.
        """
        await self.relations.set_state(
            ContentKind.FAVORITE_NOTE, user_id, note_id, favorite
        )
        logger.info(
            "note_favorite_set",
            note_id=str(note_id),
            user_id=str(user_id),
            favorite=favorite,
        )

    async def signed_link(
        self,
        user_id: UUID,
        *,
        note_id: UUID | None = None,
        storage_path: str | None = None,
    ) -> NoteLink:
        """Issue (or reuse) a signed URL for a note the user may read.

        Raises:
            ValidationError: If neither a note id nor a storage path is given
            NoteNotFoundError: If the note does not exist
            SubjectAccessDeniedError: If the user has no access to its subject
            StorageServiceError: If the storage provider fails
        """
        if note_id is not None:
            note = await self.note_repo.get_by_id(note_id)
        elif storage_path:
            note = await self.note_repo.get_by_storage_path(storage_path)
        else:
            raise ValidationError("Note ID or storage path is required")

        if note is None:
            raise NoteNotFoundError()

        if not await self.access_repo.has_access(user_id, note.subject_id):
            raise SubjectAccessDeniedError(details={"note_id": str(note.id)})

        try:
            signed = await self.storage.get_signed_url(note.storage_path)
        except StorageError as e:
            raise StorageServiceError(details={"error": str(e)}) from e

        return NoteLink(signed_url=signed.url, expires_in=signed.expires_in_seconds)
