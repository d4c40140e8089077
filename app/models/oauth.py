"""OAuth models - seller credentials and short-lived CSRF states."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.time_utils import utcnow


class OAuthCredential(Base):
    """
    Processor credentials for one seller.
    Tokens are stored only in encrypted form (see TokenCipher).
    """

    __tablename__ = "oauth_credentials"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # One credential per seller; re-authorizing overwrites
    seller_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sellers.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )

    encrypted_access_token: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    encrypted_refresh_token: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    public_key: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    mp_user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OAuthCredential seller={self.seller_id}>"


class OAuthState(Base):
    """
    CSRF state for one authorization attempt.
    Deleted when consumed; the delete is what prevents replay.
    """

    __tablename__ = "oauth_states"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    state: Mapped[str] = mapped_column(
        String(128),
        unique=True,
        nullable=False,
        index=True,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OAuthState user={self.user_id}>"
