# src/parley_stage/models/message.py
"""Models describing direct messages between users."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from parley_stage.db.session import Base
from parley_stage.db.time import utcnow


class Message(Base):
    """Encrypted message exchanged between two users.

    ``content`` is RSA-OAEP ciphertext under the receiver's public key, so
    only the receiver can read it back. Rows are never edited; deletion only
    stamps ``deleted_at``.
    """

    __tablename__ = "message"
    __table_args__ = (Index("ix_message_pair_created", "sender_id", "receiver_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id"), nullable=False
    )
    receiver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id"), nullable=False
    )

    # Base64 ciphertext.
    content: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
