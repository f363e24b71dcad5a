import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from meetlines.hooks.base import Hook
from meetlines.models import Friendship, FriendshipStatus

logger = logging.getLogger(__name__)


class FriendRequestHook(Hook):
    """Accept or decline friend requests addressed to the signed-in user."""

    def _target(self, friendship_id: str, requester_id: str) -> Optional[Friendship]:
        # Exactly one row: the request from requester_id to the current user
        return (
            self.db.query(Friendship)
            .filter(
                Friendship.id == friendship_id,
                Friendship.user_id == requester_id,
                Friendship.friend_id == self.user.id,
            )
            .first()
        )

    def accept(self, friendship_id: str, requester_id: str) -> bool:
        if not self.user:
            return False
        self.loading = True
        try:
            row = self._target(friendship_id, requester_id)
            if row is None:
                logger.error("Friend request %s not found for user %s", friendship_id, self.user.id)
                self.toaster.error("Erro ao aceitar solicitação")
                return False
            row.status = FriendshipStatus.ACCEPTED.value
            self.db.commit()
            self.toaster.success("Solicitação aceita!")
            return True
        except SQLAlchemyError as e:
            self._fail("Error accepting friend request", "Erro ao aceitar solicitação", e)
            return False
        finally:
            self.loading = False

    def decline(self, friendship_id: str, requester_id: str) -> bool:
        if not self.user:
            return False
        self.loading = True
        try:
            row = self._target(friendship_id, requester_id)
            if row is None:
                logger.error("Friend request %s not found for user %s", friendship_id, self.user.id)
                self.toaster.error("Erro ao recusar solicitação")
                return False
            self.db.delete(row)
            self.db.commit()
            self.toaster.success("Solicitação recusada")
            return True
        except SQLAlchemyError as e:
            self._fail("Error declining friend request", "Erro ao recusar solicitação", e)
            return False
        finally:
            self.loading = False
