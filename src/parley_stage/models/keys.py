"""Per-user asymmetric key material for end-to-end encrypted chat."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley_stage.db.session import Base
from parley_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .user import User


class UserKey(Base):
    """RSA keypair issued to a user.

    The private half is only ever stored wrapped under a key derived from the
    user's password; the server cannot unwrap it on its own. Both columns are
    written together, so a row either carries a full pair or does not exist.
    """

    __tablename__ = "user_key"

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user_account.id", ondelete="CASCADE"),
        primary_key=True,
    )
    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    # scrypt-aesgcm$n$r$p$salt$nonce$ciphertext
    encrypted_private_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    user: Mapped[User] = relationship("User", back_populates="key_material")
