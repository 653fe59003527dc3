from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_market.db.session import Base


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class RefreshToken(Base):
    """One link in a profile's refresh-token rotation chain; only the SHA-256 digest is stored."""

    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    replaced_by_token_id: Mapped[int | None] = mapped_column(
        ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True
    )

    profile = relationship("Profile", back_populates="refresh_tokens")

    def is_usable(self, now: datetime) -> bool:
        return self.revoked_at is None and _as_aware(self.expires_at) > now

    def revoke(self, now: datetime, *, replaced_by: RefreshToken | None = None) -> None:
        if self.revoked_at is None:
            self.revoked_at = now
        if replaced_by is not None:
            self.replaced_by_token_id = replaced_by.id
