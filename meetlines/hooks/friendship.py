import logging
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import Friendship, FriendshipStatus, User

logger = logging.getLogger(__name__)


class FriendshipHook(Hook):
    """Friendship status between the signed-in user and ``friend_id``.

    States move ``none -> pending`` via :meth:`add_friend` and back to
    ``none`` from ``pending`` or ``accepted`` via :meth:`remove_friend`.
    Reaching ``accepted`` happens elsewhere, when the other user accepts
    the request (see :class:`FriendRequestHook`).
    """

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        friend_id: Optional[str],
        toaster: Optional[Toaster] = None,
    ):
        super().__init__(db, user, toaster)
        self.friend_id = friend_id
        self.status = FriendshipStatus.NONE
        self.loading = True

    def _pair_filter(self):
        return or_(
            and_(Friendship.user_id == self.user.id, Friendship.friend_id == self.friend_id),
            and_(Friendship.user_id == self.friend_id, Friendship.friend_id == self.user.id),
        )

    def load(self):
        if not self.user or not self.friend_id:
            self.loading = False
            return
        try:
            row = self.db.query(Friendship).filter(self._pair_filter()).first()
            self.status = FriendshipStatus(row.status) if row else FriendshipStatus.NONE
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error checking friendship status: %s", e)
        finally:
            self.loading = False

    def add_friend(self) -> bool:
        if not self.user:
            self.toaster.error("Faça login para adicionar amigos")
            return False
        if not self.friend_id:
            self.toaster.error("ID do usuário não encontrado")
            return False

        self.loading = True
        try:
            row = Friendship(
                user_id=self.user.id,
                friend_id=self.friend_id,
                status=FriendshipStatus.PENDING.value,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            # Mirror the stored row, not an assumed state
            self.status = FriendshipStatus(row.status)
            self.toaster.success("Solicitação de amizade enviada!")
            return True
        except SQLAlchemyError as e:
            self._fail("Error adding friend", "Erro ao adicionar amigo", e)
            return False
        finally:
            self.loading = False

    def remove_friend(self) -> bool:
        if not self.user or not self.friend_id:
            return False

        self.loading = True
        try:
            rows = self.db.query(Friendship).filter(self._pair_filter()).all()
            for row in rows:
                self.db.delete(row)
            self.db.commit()
            self.status = FriendshipStatus.NONE
            self.toaster.success("Amigo removido")
            return True
        except SQLAlchemyError as e:
            self._fail("Error removing friend", "Erro ao remover amigo", e)
            return False
        finally:
            self.loading = False
