"""Follow graph mutations."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from parley_stage.core.errors import BadRequestError, NotFoundError
from parley_stage.db.time import utcnow
from parley_stage.models import Follow, User

logger = logging.getLogger(__name__)


class FollowService:
    """Create and soft-delete follow edges."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _edge(self, follower_id: str, followed_id: str) -> Follow | None:
        return (
            self.db.query(Follow)
            .filter(Follow.follower_id == follower_id, Follow.followed_id == followed_id)
            .first()
        )

    def follow_user(self, follower_id: str, followed_id: str) -> Follow:
        """Follow ``followed_id``; re-following revives a soft-deleted edge."""
        if follower_id == followed_id:
            raise BadRequestError("Users cannot follow themselves")
        if self.db.query(User.id).filter(User.id == followed_id).first() is None:
            raise NotFoundError("User not found")

        edge = self._edge(follower_id, followed_id)
        if edge is None:
            edge = Follow(follower_id=follower_id, followed_id=followed_id)
            self.db.add(edge)
        elif edge.deleted_at is not None:
            edge.deleted_at = None
            edge.created_at = utcnow()
        self.db.commit()
        self.db.refresh(edge)
        logger.debug("User %s follows %s", follower_id, followed_id)
        return edge

    def unfollow_user(self, follower_id: str, followed_id: str) -> None:
        edge = self._edge(follower_id, followed_id)
        if edge is None or edge.deleted_at is not None:
            raise NotFoundError("Not following this user")
        edge.deleted_at = utcnow()
        self.db.commit()
        logger.debug("User %s unfollowed %s", follower_id, followed_id)

    def is_following(self, follower_id: str, followed_id: str) -> bool:
        edge = self._edge(follower_id, followed_id)
        return edge is not None and edge.deleted_at is None
