import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import Follower, User

logger = logging.getLogger(__name__)


class FollowHook(Hook):
    """Whether the signed-in user follows an organizer."""

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        organizer_id: Optional[str],
        toaster: Optional[Toaster] = None,
    ):
        super().__init__(db, user, toaster)
        self.organizer_id = organizer_id
        self.is_following = False
        self.loading = True

    def _query(self):
        return self.db.query(Follower).filter(
            Follower.user_id == self.user.id,
            Follower.organizer_id == self.organizer_id,
        )

    def load(self):
        if not self.user or not self.organizer_id:
            self.loading = False
            return
        try:
            self.is_following = self._query().first() is not None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error checking follow status: %s", e)
        finally:
            self.loading = False

    def toggle_follow(self) -> bool:
        if not self.user:
            self.toaster.error("Faça login para seguir organizadores")
            return False
        if not self.organizer_id:
            self.toaster.error("ID do organizador não encontrado")
            return False

        self.loading = True
        try:
            if self.is_following:
                for row in self._query().all():
                    self.db.delete(row)
                self.db.commit()
                self.is_following = False
                self.toaster.success("Você deixou de seguir este organizador")
            else:
                self.db.add(Follower(user_id=self.user.id, organizer_id=self.organizer_id))
                self.db.commit()
                self.is_following = True
                self.toaster.success("Agora você está seguindo este organizador!")
            return True
        except SQLAlchemyError as e:
            self._fail("Error toggling follow", "Erro ao atualizar status de seguidor", e)
            return False
        finally:
            self.loading = False
