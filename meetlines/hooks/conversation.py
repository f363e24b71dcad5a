import logging
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import User, UserMessage
from meetlines.realtime import feed, ChangeEvent, INSERT

logger = logging.getLogger(__name__)


def _message_dict(message: UserMessage) -> dict:
    return {
        "id": message.id,
        "from_user_id": message.from_user_id,
        "to_user_id": message.to_user_id,
        "content": message.content,
        "read": message.read,
        "created_at": message.created_at,
    }


class ConversationHook(Hook):
    """Direct-message thread between the signed-in user and one recipient."""

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        recipient_id: str,
        toaster: Optional[Toaster] = None,
    ):
        super().__init__(db, user, toaster)
        self.recipient_id = recipient_id
        self.messages: list[dict] = []
        self.sending = False

    def _involves_pair(self, message: dict) -> bool:
        return (
            (message["from_user_id"] == self.user.id and message["to_user_id"] == self.recipient_id)
            or (message["from_user_id"] == self.recipient_id and message["to_user_id"] == self.user.id)
        )

    def _append(self, message: dict):
        if any(m["id"] == message["id"] for m in self.messages):
            return
        self.messages.append(message)

    def load(self):
        if not self.user:
            return
        self.loading = True
        try:
            rows = (
                self.db.query(UserMessage)
                .filter(or_(
                    and_(UserMessage.from_user_id == self.user.id, UserMessage.to_user_id == self.recipient_id),
                    and_(UserMessage.from_user_id == self.recipient_id, UserMessage.to_user_id == self.user.id),
                ))
                .order_by(UserMessage.created_at.asc())
                .all()
            )
            self.messages = [_message_dict(m) for m in rows]
            self._mark_read(m for m in rows if m.to_user_id == self.user.id and not m.read)
        except SQLAlchemyError as e:
            self._fail("Error loading messages", "Erro ao carregar mensagens", e)
        finally:
            self.loading = False

        if not self._channels:
            channel = feed.channel(f"chat-messages-{self.user.id}-{self.recipient_id}")
            self._subscribe(channel.on(INSERT, "user_messages", self._on_insert))

    def _mark_read(self, messages):
        changed = False
        for message in messages:
            message.read = True
            changed = True
        if changed:
            self.db.commit()
        for local in self.messages:
            if local["to_user_id"] == self.user.id:
                local["read"] = True

    def _on_insert(self, change: ChangeEvent):
        message = change.new
        if not self._involves_pair(message):
            return
        self._append(dict(message))
        if message["from_user_id"] == self.recipient_id and not message.get("read"):
            try:
                row = self.db.query(UserMessage).filter(UserMessage.id == message["id"]).first()
                if row is not None:
                    self._mark_read([row])
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error("Error marking message %s read: %s", message["id"], e)

    def send(self, content: str) -> bool:
        content = (content or "").strip()
        if not content or not self.user:
            return False

        self.sending = True
        try:
            message = UserMessage(
                from_user_id=self.user.id,
                to_user_id=self.recipient_id,
                content=content,
            )
            self.db.add(message)
            self.db.commit()
            self.db.refresh(message)
            self._append(_message_dict(message))
            return True
        except SQLAlchemyError as e:
            self._fail("Error sending message", "Erro ao enviar mensagem", e)
            return False
        finally:
            self.sending = False
