"""SQLAlchemy models for user accounts and the follow graph."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley_stage.db.session import Base
from parley_stage.db.time import utcnow

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .keys import UserKey


def _new_user_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Account able to follow others and hold chat key material."""

    __tablename__ = "user_account"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_user_id)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    key_material: Mapped[UserKey | None] = relationship(
        "UserKey",
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )


class Follow(Base):
    """Directed follow edge. A non-null ``deleted_at`` marks the edge inactive."""

    __tablename__ = "follow"
    __table_args__ = (UniqueConstraint("follower_id", "followed_id", name="uq_follow_edge"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    followed_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
