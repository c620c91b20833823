"""Per-user TOTP credential."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from models.encrypted import EncryptedJSON, EncryptedString


class MfaCredential(Base):
    """TOTP secret and recovery codes for one user.

    ``secret`` and ``backup_codes`` are encrypted at rest. ``verified_at`` is
    set when ``is_enabled`` first flips to true and cleared by a new setup.
    """

    __tablename__ = "user_totp_secrets"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_profiles.id", ondelete="CASCADE"),
        unique=True,
        index=True,
    )
    secret: Mapped[str] = mapped_column(EncryptedString(500))
    backup_codes: Mapped[list | None] = mapped_column(EncryptedJSON, nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user = relationship("UserProfile", back_populates="mfa_credential")

    def __repr__(self):
        return f"<MfaCredential user_id={self.user_id} enabled={self.is_enabled}>"
