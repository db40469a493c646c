"""Waiting list subscription and token-based unsubscribe.

Unsubscribe links in emails carry ``?email=&token=`` where the token is
the unpadded base64url SHA-256 of ``email + UNSUBSCRIBE_SECRET``. No
session is needed; possession of the token proves the link came from us.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import structlog

from maturamente.core.exceptions import AlreadyOnWaitlistError, InvalidTokenError
from maturamente.models.billing import WaitlistEntry
from maturamente.repositories.billing import WaitlistRepository

logger = structlog.get_logger(__name__)


def unsubscribe_token(email: str, secret: str) -> str:
    """Token embedded in unsubscribe links for ``email``."""
    digest = hashlib.sha256(f"{email}{secret}".encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_unsubscribe_token(email: str, token: str, secret: str) -> bool:
    return hmac.compare_digest(unsubscribe_token(email, secret), token)


class MailingService:
    """Waiting list membership."""

    def __init__(self, waitlist_repo: WaitlistRepository, secret: str) -> None:
        self.waitlist_repo = waitlist_repo
        self.secret = secret

    async def join(self, email: str, name: str | None = None) -> WaitlistEntry:
        """Add the email, or re-activate it if it had unsubscribed.

        Raises:
            AlreadyOnWaitlistError: If the email is already subscribed
        """
        entry = await self.waitlist_repo.get_by_email(email)
        if entry is None:
            entry = await self.waitlist_repo.create(WaitlistEntry(email=email, name=name))
            logger.info("waitlist_joined", waitlist_id=str(entry.id))
            return entry

        if not entry.unsubscribed:
            raise AlreadyOnWaitlistError()

        entry.unsubscribed = False
        if name:
            entry.name = name
        entry = await self.waitlist_repo.update(entry)
        logger.info("waitlist_resubscribed", waitlist_id=str(entry.id))
        return entry

    async def unsubscribe(self, email: str | None, token: str | None) -> None:
        """Unsubscribe an email given a matching token.

        Unknown emails with a valid token succeed silently.

        Raises:
            InvalidTokenError: If email or token is missing or they do not match
        """
        if not email or not token:
            raise InvalidTokenError()
        if not verify_unsubscribe_token(email, token, self.secret):
            raise InvalidTokenError()

        entry = await self.waitlist_repo.get_by_email(email)
        if entry is not None and not entry.unsubscribed:
            entry.unsubscribed = True
            await self.waitlist_repo.update(entry)
        logger.info("waitlist_unsubscribed", found=entry is not None)
