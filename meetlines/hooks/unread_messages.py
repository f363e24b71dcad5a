import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import User, UserMessage
from meetlines.realtime import feed, ChangeEvent, INSERT, UPDATE

logger = logging.getLogger(__name__)

DEFAULT_RECONCILE_EVERY = 50


class UnreadMessagesHook(Hook):
    """Live count of unread direct messages for the signed-in user.

    The count is the size of a set of unread message ids rather than a
    running total, so a change delivered twice or out of order (an UPDATE
    marking a message read before its INSERT) cannot skew it. Every
    ``reconcile_every`` deliveries the set is re-read from the store.
    """

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        toaster: Optional[Toaster] = None,
        reconcile_every: int = DEFAULT_RECONCILE_EVERY,
    ):
        super().__init__(db, user, toaster)
        self.reconcile_every = reconcile_every
        self._unread: set[str] = set()
        self._read: set[str] = set()
        self._deliveries = 0

    @property
    def count(self) -> int:
        return len(self._unread)

    def load(self):
        if not self.user:
            self._unread = set()
            return
        self.reconcile()
        if not self._channels:
            channel = (
                feed.channel(f"unread-messages-count-{self.user.id}")
                .on(INSERT, "user_messages", self._on_insert)
                .on(UPDATE, "user_messages", self._on_update)
            )
            self._subscribe(channel)

    def reconcile(self):
        """Replace the local set with the authoritative one from the store."""
        try:
            rows = (
                self.db.query(UserMessage.id)
                .filter(UserMessage.to_user_id == self.user.id, UserMessage.read.is_(False))
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error loading unread count: %s", e)
            return
        self._unread = {row[0] for row in rows}
        self._read = set()
        self._deliveries = 0

    def _after_delivery(self):
        self._deliveries += 1
        if self.reconcile_every and self._deliveries >= self.reconcile_every:
            self.reconcile()

    def _on_insert(self, change: ChangeEvent):
        message = change.new
        if message.get("to_user_id") != self.user.id:
            return
        message_id = message["id"]
        if not message.get("read") and message_id not in self._read:
            self._unread.add(message_id)
        self._after_delivery()

    def _on_update(self, change: ChangeEvent):
        message = change.new
        if message.get("to_user_id") != self.user.id:
            return
        message_id = message["id"]
        if message.get("read"):
            self._unread.discard(message_id)
            self._read.add(message_id)
        else:
            self._read.discard(message_id)
            self._unread.add(message_id)
        self._after_delivery()
