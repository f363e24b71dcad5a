"""In-process change feed for store tables.

Row inserts and updates are captured when a session flushes and delivered
to subscribers once the surrounding transaction commits; rolled back work
is never delivered. Subscribers register callbacks on a named channel per
``(event type, table)`` pair, mirroring the hosted realtime API:

    channel = feed.channel("unread-messages")
    channel.on("INSERT", "user_messages", on_insert).subscribe()
    ...
    feed.remove_channel(channel)

Delivery is synchronous and in commit order. A callback that commits
further changes has them queued behind the change currently being
delivered rather than delivered re-entrantly.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from meetlines.database import Base

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
EVENT_TYPES = (INSERT, UPDATE)

_PENDING_KEY = "realtime_pending"
_COMMITTED_KEY = "realtime_committed"


@dataclass
class ChangeEvent:
    table: str
    type: str
    new: dict
    old: dict = field(default_factory=dict)
    commit_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Callback = Callable[[ChangeEvent], None]


class Channel:
    def __init__(self, feed: "ChangeFeed", name: str):
        self.feed = feed
        self.name = name
        self.bindings: list[tuple[str, str, Callback]] = []
        self.subscribed = False

    def on(self, event_type: str, table: str, callback: Callback) -> "Channel":
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unsupported event type: {event_type}")
        self.bindings.append((event_type, table, callback))
        return self

    def subscribe(self) -> "Channel":
        self.feed._add(self)
        self.subscribed = True
        return self

    def unsubscribe(self):
        self.feed.remove_channel(self)

    def _deliver(self, change: ChangeEvent):
        for event_type, table, callback in self.bindings:
            if event_type != change.type or table != change.table:
                continue
            try:
                callback(change)
            except Exception:
                # One failing subscriber must not starve the others
                logger.exception("Realtime callback failed on channel %s", self.name)


class ChangeFeed:
    def __init__(self):
        self._channels: list[Channel] = []
        self._lock = threading.Lock()
        self._local = threading.local()

    def channel(self, name: str) -> Channel:
        return Channel(self, name)

    def _add(self, channel: Channel):
        with self._lock:
            if channel not in self._channels:
                self._channels.append(channel)

    def remove_channel(self, channel: Channel):
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)
        channel.subscribed = False

    def channels(self) -> list[Channel]:
        with self._lock:
            return list(self._channels)

    def publish(self, changes: list[ChangeEvent]):
        queue = getattr(self._local, "queue", None)
        if queue is not None:
            # Already dispatching on this thread; keep commit order
            queue.extend(changes)
            return

        queue = deque(changes)
        self._local.queue = queue
        try:
            while queue:
                change = queue.popleft()
                for channel in self.channels():
                    channel._deliver(change)
        finally:
            self._local.queue = None


feed = ChangeFeed()


def _row_dict(obj) -> dict:
    state = inspect(obj)
    return {attr.key: getattr(obj, attr.key) for attr in state.mapper.column_attrs}


def _old_row_dict(obj) -> dict:
    state = inspect(obj)
    old = {}
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if history.deleted:
            old[attr.key] = history.deleted[0]
        else:
            old[attr.key] = getattr(obj, attr.key)
    return old


def _capture(session: Session, flush_context):
    pending = session.info.setdefault(_PENDING_KEY, [])
    for obj in session.new:
        if isinstance(obj, Base):
            pending.append(ChangeEvent(table=obj.__tablename__, type=INSERT, new=_row_dict(obj)))
    for obj in session.dirty:
        if not isinstance(obj, Base) or not session.is_modified(obj, include_collections=False):
            continue
        pending.append(ChangeEvent(
            table=obj.__tablename__,
            type=UPDATE,
            new=_row_dict(obj),
            old=_old_row_dict(obj),
        ))


def _mark_committed(session: Session):
    committed = session.info.setdefault(_COMMITTED_KEY, [])
    committed.extend(session.info.pop(_PENDING_KEY, []))


def _discard(session: Session, previous_transaction=None):
    session.info.pop(_PENDING_KEY, None)


def _dispatch(session: Session, transaction):
    # Deliver once the outermost transaction is over so callbacks may query again
    if transaction.parent is not None:
        return
    changes: Optional[list] = session.info.pop(_COMMITTED_KEY, None)
    if changes:
        feed.publish(changes)


event.listen(Session, "after_flush", _capture)
event.listen(Session, "after_commit", _mark_committed)
event.listen(Session, "after_rollback", _discard)
event.listen(Session, "after_transaction_end", _dispatch)
