import logging
from datetime import datetime, timezone
from typing import Optional, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from meetlines.hooks.base import Hook, Toaster
from meetlines.models import (
    Event, PlatformEvent, Profile, EventLike, EventComment,
    EventRegistration, TicketType, EventStatus, PlatformEventStatus, User,
)
from meetlines.realtime import feed, ChangeEvent, INSERT, UPDATE

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "todos"

# User interests (from onboarding) mapped to event categories
INTEREST_CATEGORIES = {
    "balada": ["festas", "eletronica", "funk"],
    "lives": ["musica", "eletronica", "rock", "pop"],
    "encontros": ["networking", "gastronomia"],
    "shows": ["rock", "pop", "sertanejo", "jazz"],
    "festas": ["festas", "funk", "samba"],
    "networking": ["vendas", "networking"],
    "esportes": ["esportes"],
    "cultura": ["arte", "jazz", "outros"],
}

EVENT_FIELDS = (
    "id", "title", "description", "image_url", "event_date", "end_date", "location",
    "location_link", "max_attendees", "is_live", "status", "category",
    "ticket_price", "ticket_link",
)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def categories_for_interests(interests: Iterable[str]) -> set[str]:
    categories = set()
    for interest in interests:
        categories.update(INTEREST_CATEGORIES.get(interest, []))
    return categories


def sort_feed(events: list[dict]) -> list[dict]:
    """Events with paid tickets first, then by start date."""
    return sorted(events, key=lambda e: (not e["has_paid_tickets"], as_utc(e["event_date"])))


def matches_search(event: dict, query: str) -> bool:
    query = query.lower().strip()
    organizer = event.get("organizer") or {}
    profile = organizer.get("profile") or {}
    candidates = [
        event.get("title"),
        event.get("description"),
        organizer.get("page_title"),
        profile.get("display_name"),
        event.get("location"),
        event.get("category"),
    ]
    return any(c and query in c.lower() for c in candidates)


def registration_counts(db: Session, event_id: str) -> dict:
    registrations = (
        db.query(func.count(EventRegistration.id))
        .filter(EventRegistration.event_id == event_id)
        .scalar()
    )
    confirmed = (
        db.query(func.count(EventRegistration.id))
        .filter(EventRegistration.event_id == event_id, EventRegistration.attendance_confirmed.is_(True))
        .scalar()
    )
    unique = (
        db.query(func.count(func.distinct(EventRegistration.user_id)))
        .filter(EventRegistration.event_id == event_id)
        .scalar()
    )
    return {
        "registrations_count": registrations or 0,
        "confirmed_attendees_count": confirmed or 0,
        "unique_attendees_count": unique or 0,
    }


def likes_count(db: Session, event_id: str) -> int:
    return db.query(func.count(EventLike.id)).filter(EventLike.event_id == event_id).scalar() or 0


def comments_count(db: Session, event_id: str) -> int:
    return db.query(func.count(EventComment.id)).filter(EventComment.event_id == event_id).scalar() or 0


def is_liked_by(db: Session, user: Optional[User], event_id: str) -> bool:
    if not user:
        return False
    return (
        db.query(EventLike.id)
        .filter(EventLike.event_id == event_id, EventLike.user_id == user.id)
        .first()
        is not None
    )


def toggle_event_like(db: Session, user: User, event_id: str) -> tuple[int, bool]:
    """Add or remove the user's like, then re-read count and state."""
    existing = (
        db.query(EventLike)
        .filter(EventLike.event_id == event_id, EventLike.user_id == user.id)
        .first()
    )
    if existing:
        db.delete(existing)
    else:
        db.add(EventLike(event_id=event_id, user_id=user.id))
    db.commit()
    # Re-read rather than flip, so concurrent likes are reflected
    return likes_count(db, event_id), is_liked_by(db, user, event_id)


def apply_profile_update(organizer: dict, row: dict):
    """Patch an organizer's display data from an updated profiles row."""
    current = organizer["profile"]
    if row.get("display_name") is not None:
        current["display_name"] = row["display_name"]
    if row.get("avatar_url") is not None:
        current["avatar_url"] = row["avatar_url"]


def apply_organizer_update(organizer: dict, row: dict):
    if row.get("page_title") is not None:
        organizer["page_title"] = row["page_title"]
    if row.get("avatar_url") is not None:
        organizer["avatar_url"] = row["avatar_url"]
        organizer["profile"]["avatar_url"] = row["avatar_url"]


class EventFeedHook(Hook):
    """Home feed: upcoming organizer events merged with platform events."""

    def __init__(
        self,
        db: Session,
        user: Optional[User],
        category: Optional[str] = None,
        search: Optional[str] = None,
        interests: Optional[list[str]] = None,
        toaster: Optional[Toaster] = None,
    ):
        super().__init__(db, user, toaster)
        self.category = category
        self.search = search
        self.interests = interests or []
        self.events: list[dict] = []

    # ---------- reads ----------

    def _regular_event(self, event: Event) -> dict:
        organizer = event.organizer
        profile = self.db.query(Profile).filter(Profile.user_id == organizer.user_id).first()
        paid_types = (
            self.db.query(TicketType.id)
            .filter(TicketType.event_id == event.id, TicketType.is_active.is_(True), TicketType.price > 0)
            .first()
        )
        data = {f: getattr(event, f) for f in EVENT_FIELDS}
        data.update({
            "organizer_id": event.organizer_id,
            "current_attendees": event.current_attendees or 0,
            "is_platform_event": False,
            "organizer": {
                "id": organizer.id,
                "page_title": organizer.page_title,
                "user_id": organizer.user_id,
                "avatar_url": organizer.avatar_url,
                "profile": {
                    "display_name": profile.display_name if profile else None,
                    "avatar_url": organizer.avatar_url or (profile.avatar_url if profile else None),
                },
            },
            "likes_count": likes_count(self.db, event.id),
            "comments_count": comments_count(self.db, event.id),
            "is_liked": is_liked_by(self.db, self.user, event.id),
            "has_paid_tickets": bool(
                paid_types is not None
                or (event.ticket_price and event.ticket_price > 0)
                or event.ticket_link
            ),
        })
        data.update(registration_counts(self.db, event.id))
        return data

    @staticmethod
    def _platform_event(event: PlatformEvent) -> dict:
        data = {f: getattr(event, f) for f in EVENT_FIELDS}
        data.update({
            "organizer_id": "platform",
            "is_platform_event": True,
            "organizer": {
                "id": "platform",
                "page_title": event.organizer_name,
                "user_id": "platform",
                "avatar_url": None,
                "profile": {"display_name": event.organizer_name, "avatar_url": None},
            },
            "current_attendees": 0,
            "is_live": False,
            "likes_count": 0,
            "comments_count": 0,
            "is_liked": False,
            "registrations_count": 0,
            "confirmed_attendees_count": 0,
            "unique_attendees_count": 0,
            "has_paid_tickets": bool((event.ticket_price and event.ticket_price > 0) or event.ticket_link),
        })
        return data

    def fetch(self):
        self.loading = True
        try:
            events_q = (
                self.db.query(Event)
                .join(Event.organizer)
                .options(joinedload(Event.organizer))
                .filter(Event.status == EventStatus.UPCOMING.value)
            )
            platform_q = self.db.query(PlatformEvent).filter(
                PlatformEvent.status == PlatformEventStatus.UPCOMING.value
            )
            if self.category and self.category != ALL_CATEGORIES:
                events_q = events_q.filter(Event.category == self.category)
                platform_q = platform_q.filter(PlatformEvent.category == self.category)

            feed_events = [self._regular_event(e) for e in events_q.order_by(Event.event_date.asc()).all()]
            feed_events += [self._platform_event(e) for e in platform_q.order_by(PlatformEvent.event_date.asc()).all()]
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error fetching events: %s", e)
            self.loading = False
            return

        if self.interests:
            relevant = categories_for_interests(self.interests)
            feed_events = [e for e in feed_events if not e["category"] or e["category"] in relevant]

        feed_events = sort_feed(feed_events)

        if self.search and self.search.strip():
            feed_events = [e for e in feed_events if matches_search(e, self.search)]

        self.events = feed_events
        self.loading = False

    def load(self):
        self.fetch()
        if not self._channels:
            self._subscribe(
                feed.channel("realtime-organizer-profile-events")
                .on(UPDATE, "profiles", self._on_profile_update)
                .on(UPDATE, "organizers", self._on_organizer_update)
            )
            self._subscribe(
                feed.channel("realtime-event-registrations")
                .on(INSERT, "event_registrations", self._on_registration_change)
                .on(UPDATE, "event_registrations", self._on_registration_change)
            )

    # ---------- writes ----------

    def toggle_like(self, event_id: str) -> bool:
        if not self.user:
            return False
        try:
            likes, is_liked = toggle_event_like(self.db, self.user, event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error toggling like: %s", e)
            return False

        for event in self.events:
            if event["id"] == event_id:
                event["likes_count"] = likes
                event["is_liked"] = is_liked
        return True

    # ---------- realtime ----------

    def _on_profile_update(self, change: ChangeEvent):
        for event in self.events:
            if event["organizer"]["user_id"] == change.new.get("user_id"):
                apply_profile_update(event["organizer"], change.new)

    def _on_organizer_update(self, change: ChangeEvent):
        for event in self.events:
            if event["organizer"]["id"] == change.new.get("id"):
                apply_organizer_update(event["organizer"], change.new)

    def _on_registration_change(self, change: ChangeEvent):
        event_id = change.new.get("event_id")
        targets = [e for e in self.events if e["id"] == event_id]
        if not targets:
            return
        try:
            counts = registration_counts(self.db, event_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Error refreshing registration counts for %s: %s", event_id, e)
            return
        for event in targets:
            event.update(counts)
