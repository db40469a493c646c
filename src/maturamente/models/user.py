"""User accounts and login sessions.

Accounts and sessions are written by the authentication provider; this
service only reads them to resolve the caller's identity.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from maturamente.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A registered user.

    Attributes:
        email: Login email, unique
        name: Display name
        username: Public handle, unique when set
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    username: Mapped[str | None] = mapped_column(
        String(50), unique=True, nullable=True
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class AuthSession(Base):
    """A login session keyed by the token stored in the session cookie."""

    __tablename__ = "sessions"

    session_token: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    expires: Mapped[datetime] = mapped_column(nullable=False)
