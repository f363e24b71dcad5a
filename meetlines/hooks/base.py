"""Shared plumbing for the client data hooks.

A hook owns a small piece of view state mirrored from the store. It reads
through a SQLAlchemy session on behalf of one signed-in user (or nobody),
reports outcomes as toasts, and never lets store errors escape: mutating
actions return True/False.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from meetlines.models import User
from meetlines.realtime import feed, Channel

logger = logging.getLogger(__name__)


@dataclass
class Toast:
    level: str  # "success" | "error"
    message: str


class Toaster:
    """Collects user-facing notifications raised by hooks."""

    def __init__(self):
        self.toasts: list[Toast] = []

    def success(self, message: str):
        self.toasts.append(Toast("success", message))

    def error(self, message: str):
        logger.debug("toast error: %s", message)
        self.toasts.append(Toast("error", message))

    @property
    def last(self) -> Optional[Toast]:
        return self.toasts[-1] if self.toasts else None


class Hook:
    def __init__(self, db: Session, user: Optional[User], toaster: Optional[Toaster] = None):
        self.db = db
        self.user = user
        self.toaster = toaster or Toaster()
        self.loading = False
        self._channels: list[Channel] = []

    def _subscribe(self, channel: Channel) -> Channel:
        channel.subscribe()
        self._channels.append(channel)
        return channel

    def close(self):
        """Drop every realtime channel this hook opened."""
        for channel in self._channels:
            feed.remove_channel(channel)
        self._channels = []

    def _fail(self, log_message: str, toast_message: str, exc: Exception):
        self.db.rollback()
        logger.error("%s: %s", log_message, exc)
        self.toaster.error(toast_message)
