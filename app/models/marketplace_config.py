"""Marketplace configuration - platform-wide fee and processor account."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric, Boolean, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.time_utils import utcnow


class MarketplaceConfig(Base):
    """At most one active row; absent means settings defaults apply."""

    __tablename__ = "marketplace_config"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Platform's processor user id, sent as sponsor_id
    mercado_pago_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )

    platform_fee_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<MarketplaceConfig fee={self.platform_fee_percentage}%>"
