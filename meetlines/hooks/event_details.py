"""Single event page: event, organizer, latest comments and live counters."""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from meetlines.hooks.base import Hook, Toaster
from meetlines.hooks.events import (
    EVENT_FIELDS, apply_organizer_update, apply_profile_update, as_utc, comments_count,
    is_liked_by, likes_count, registration_counts, toggle_event_like,
)
from meetlines.models import Event, EventComment, EventStatus, Profile, User
from meetlines.realtime import feed, ChangeEvent, INSERT, UPDATE

logger = logging.getLogger(__name__)

COMMENTS_PAGE_SIZE = 10


class EventDetailsHook(Hook):
    def __init__(
        self,
        db: Session,
        user: Optional[User],
        event_id: Optional[str],
        toaster: Optional[Toaster] = None,
    ):
        super().__init__(db, user, toaster)
        self.event_id = event_id
        self.event: Optional[dict] = None
        self.comments: list[dict] = []

    # ---------- reads ----------

    def _author(self, user_id: str) -> Optional[dict]:
        profile = self.db.query(Profile).filter(Profile.user_id == user_id).first()
        if not profile:
            return None
        return {"display_name": profile.display_name, "avatar_url": profile.avatar_url}

    def _comment_dict(self, comment: EventComment) -> dict:
        return {
            "id": comment.id,
            "content": comment.content,
            "created_at": comment.created_at,
            "user_id": comment.user_id,
            "user": self._author(comment.user_id),
        }

    def _latest_comments(self) -> list[dict]:
        rows = (
            self.db.query(EventComment)
            .filter(EventComment.event_id == self.event_id)
            .order_by(EventComment.created_at.desc())
            .limit(COMMENTS_PAGE_SIZE)
            .all()
        )
        return [self._comment_dict(c) for c in rows]

    def fetch(self):
        if not self.event_id:
            return
        self.loading = True
        try:
            event = (
                self.db.query(Event)
                .join(Event.organizer)
                .options(joinedload(Event.organizer))
                .filter(Event.id == self.event_id)
                .first()
            )
            if not event:
                return

            organizer = event.organizer
            profile = self.db.query(Profile).filter(Profile.user_id == organizer.user_id).first()
            comments = self._latest_comments()

            data = {f: getattr(event, f) for f in EVENT_FIELDS}
            data.update({
                "organizer_id": event.organizer_id,
                "current_attendees": event.current_attendees or 0,
                "organizer": {
                    "id": organizer.id,
                    "page_title": organizer.page_title,
                    "user_id": organizer.user_id,
                    "avatar_url": organizer.avatar_url,
                    "profile": {
                        "display_name": profile.display_name if profile else None,
                        "avatar_url": organizer.avatar_url or (profile.avatar_url if profile else None),
                        "notes": profile.notes if profile else None,
                    },
                },
                "likes_count": likes_count(self.db, event.id),
                "comments_count": comments_count(self.db, event.id),
                "is_liked": is_liked_by(self.db, self.user, event.id),
                "comments": comments,
                # Live once started, until the closer marks it completed
                "is_live": (
                    as_utc(event.event_date) <= datetime.now(timezone.utc)
                    and event.status != EventStatus.COMPLETED.value
                ),
            })
            data.update(registration_counts(self.db, event.id))
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error fetching event details: %s", e)
            return
        finally:
            self.loading = False

        self.event = data
        self.comments = comments

    def load(self):
        self.fetch()
        if self._channels or not self.event_id:
            return
        self._subscribe(
            feed.channel("realtime-event-registrations-details")
            .on(INSERT, "event_registrations", self._on_registration_change)
            .on(UPDATE, "event_registrations", self._on_registration_change)
        )
        if self.event:
            self._subscribe(
                feed.channel("realtime-organizer-profile-eventdetails")
                .on(UPDATE, "profiles", self._on_profile_update)
                .on(UPDATE, "organizers", self._on_organizer_update)
            )

    # ---------- writes ----------

    def toggle_like(self) -> bool:
        if not self.user or not self.event_id:
            return False
        try:
            likes, is_liked = toggle_event_like(self.db, self.user, self.event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error toggling like: %s", e)
            return False

        if self.event:
            self.event["likes_count"] = likes
            self.event["is_liked"] = is_liked
        return True

    def add_comment(self, content: str) -> bool:
        content = (content or "").strip()
        if not content or not self.user or not self.event_id:
            return False
        try:
            comment = EventComment(event_id=self.event_id, user_id=self.user.id, content=content)
            self.db.add(comment)
            self.db.commit()
            self.db.refresh(comment)
            new_comment = self._comment_dict(comment)
            total = comments_count(self.db, self.event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error adding comment: %s", e)
            return False

        self.comments.insert(0, new_comment)
        if self.event:
            self.event["comments"] = self.comments
            self.event["comments_count"] = total
        return True

    # ---------- realtime ----------

    def _on_profile_update(self, change: ChangeEvent):
        organizer = self.event["organizer"] if self.event else None
        if organizer and organizer["user_id"] == change.new.get("user_id"):
            apply_profile_update(organizer, change.new)

    def _on_organizer_update(self, change: ChangeEvent):
        organizer = self.event["organizer"] if self.event else None
        if organizer and organizer["id"] == change.new.get("id"):
            apply_organizer_update(organizer, change.new)

    def _on_registration_change(self, change: ChangeEvent):
        if change.new.get("event_id") != self.event_id or not self.event:
            return
        try:
            counts = registration_counts(self.db, self.event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error refreshing registration counts for %s: %s", self.event_id, e)
            return
        self.event.update(counts)
