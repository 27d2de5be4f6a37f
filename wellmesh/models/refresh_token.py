"""Issued refresh tokens - one row per token, removed on logout or rotation."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wellmesh.models.base import BaseModel


class RefreshToken(BaseModel):
    """A refresh token that can still be exchanged for a new access token.

    The signed token string is stored verbatim; expired rows are purged
    periodically.
    """

    __tablename__ = "refresh_tokens"

    token: Mapped[str] = mapped_column(String(512), nullable=False, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")  # noqa: F821
