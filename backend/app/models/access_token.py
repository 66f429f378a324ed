"""API access token model.

Consulted by bearer-token authentication of the read API. Tokens are
provisioned out-of-band (scripts/create_api_token.py) and deactivated, never
deleted, so audit references stay valid.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, UUIDPrimaryKeyMixin


class ApiToken(UUIDPrimaryKeyMixin, CreatedAtMixin, Base):
    __tablename__ = "api_tokens"

    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )

    __table_args__ = (
        Index(
            "ix_api_tokens_active_token",
            "token",
            postgresql_where=text("is_active = TRUE"),
        ),
    )
