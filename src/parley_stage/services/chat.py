# src/parley_stage/services/chat.py
"""Conversation store and mutual-follow authorization backed by the database."""

from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from parley_stage.db.time import utcnow
from parley_stage.models import Follow, Message, User, UserKey


class ChatService:
    """Database operations consumed by the chat channel and chat endpoints.

    Each instance wraps a single session; callers own the session lifecycle.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    # --- Authorization gate ---------------------------------------------------------
    def can_users_chat(self, user_id_1: str, user_id_2: str) -> bool:
        """Return True if both users hold an active follow edge towards each other."""
        if user_id_1 == user_id_2:
            return False
        active_edges = (
            self.db.query(func.count(Follow.id))
            .filter(
                or_(
                    and_(Follow.follower_id == user_id_1, Follow.followed_id == user_id_2),
                    and_(Follow.follower_id == user_id_2, Follow.followed_id == user_id_1),
                ),
                Follow.deleted_at.is_(None),
            )
            .scalar()
        )
        return int(active_edges or 0) == 2

    def user_exists(self, user_id: str) -> bool:
        return self.db.query(User.id).filter(User.id == user_id).first() is not None

    # --- Conversation store ---------------------------------------------------------
    def get_chat_history(self, user_id_1: str, user_id_2: str) -> Sequence[Message]:
        """Return non-deleted messages between two users, oldest first."""
        return (
            self.db.query(Message)
            .filter(
                or_(
                    and_(Message.sender_id == user_id_1, Message.receiver_id == user_id_2),
                    and_(Message.sender_id == user_id_2, Message.receiver_id == user_id_1),
                ),
                Message.deleted_at.is_(None),
            )
            .order_by(Message.created_at.asc(), Message.id.asc())
            .all()
        )

    def store_message(self, sender_id: str, receiver_id: str, ciphertext: str) -> Message:
        """Persist an already encrypted message."""
        message = Message(sender_id=sender_id, receiver_id=receiver_id, content=ciphertext)
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def delete_message(self, message_id: int, sender_id: str) -> Message | None:
        """Soft-delete a message sent by ``sender_id``.

        Returns:
            The deleted message, or None if no live message with that id was sent by the caller
        """
        message = (
            self.db.query(Message)
            .filter(
                Message.id == message_id,
                Message.sender_id == sender_id,
                Message.deleted_at.is_(None),
            )
            .first()
        )
        if message is None:
            return None
        message.deleted_at = utcnow()
        self.db.commit()
        self.db.refresh(message)
        return message

    # --- Key material ---------------------------------------------------------------
    def get_key_material(self, user_id: str) -> UserKey | None:
        return self.db.query(UserKey).filter(UserKey.user_id == user_id).first()

    def get_user_public_key(self, user_id: str) -> str | None:
        material = self.get_key_material(user_id)
        return material.public_key if material else None

    def get_user_private_key(self, user_id: str) -> str | None:
        """Return the wrapped private key; the plaintext key is never stored."""
        material = self.get_key_material(user_id)
        return material.encrypted_private_key if material else None

    def store_user_keys(
        self,
        user_id: str,
        public_key: str,
        encrypted_private_key: str,
        *,
        replace: bool = False,
    ) -> UserKey:
        """Persist a full keypair for ``user_id``.

        Without ``replace`` the row must not exist yet; a concurrent insert
        surfaces as :class:`sqlalchemy.exc.IntegrityError`. With ``replace``
        both columns of the existing row are overwritten together.
        """
        material = self.get_key_material(user_id) if replace else None
        if material is None:
            material = UserKey(
                user_id=user_id,
                public_key=public_key,
                encrypted_private_key=encrypted_private_key,
            )
            self.db.add(material)
        else:
            material.public_key = public_key
            material.encrypted_private_key = encrypted_private_key
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(material)
        return material
