from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Float, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
import uuid

from meetlines.database import Base


def utcnow():
    return datetime.now(timezone.utc)


def new_id():
    return str(uuid.uuid4())


class AppRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class EventStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PlatformEventStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    ENDED = "ended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FriendshipStatus(str, enum.Enum):
    NONE = "none"  # never persisted; view-state only
    PENDING = "pending"
    ACCEPTED = "accepted"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REFUNDED = "refunded"


class FeePayer(str, enum.Enum):
    BUYER = "buyer"
    ORGANIZER = "organizer"


class StripeAccountStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"


# ============== Auth ==============

class User(Base):
    """Accounts known to the store's auth service."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    roles = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    profile = relationship("Profile", back_populates="user", uselist=False)


class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_role"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)

    user = relationship("User", back_populates="roles")


# ============== People ==============

class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    username = Column(String(100), nullable=True)
    display_name = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    age = Column(Integer, nullable=True)
    avatar_url = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    website = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    notes_visible = Column(Boolean, nullable=True)
    find_friends_visible = Column(Boolean, nullable=True)
    instagram_url = Column(String(500), nullable=True)
    twitter_url = Column(String(500), nullable=True)
    linkedin_url = Column(String(500), nullable=True)
    facebook_url = Column(String(500), nullable=True)
    tiktok_url = Column(String(500), nullable=True)
    youtube_url = Column(String(500), nullable=True)
    interest = Column(String(30), nullable=True)  # namoro, network, curtição, amizade, casual
    relationship_status = Column(String(40), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="profile")


class Organizer(Base):
    __tablename__ = "organizers"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    page_title = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    business_name = Column(String(255), nullable=True)
    avatar_url = Column(String(500), nullable=True)

    # Stripe Connect mirror
    stripe_account_id = Column(String(255), nullable=True)
    stripe_account_status = Column(String(20), nullable=True)
    stripe_onboarding_completed = Column(Boolean, default=False)
    stripe_charges_enabled = Column(Boolean, default=False)
    stripe_payouts_enabled = Column(Boolean, default=False)
    stripe_details_submitted = Column(Boolean, default=False)
    stripe_connected_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    events = relationship("Event", back_populates="organizer")


class Friendship(Base):
    """A friend request from user_id to friend_id."""
    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("user_id", "friend_id", name="uq_friendship_pair"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    friend_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=FriendshipStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Follower(Base):
    __tablename__ = "followers"
    __table_args__ = (UniqueConstraint("user_id", "organizer_id", name="uq_follower_pair"),)

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organizer_id = Column(String(36), ForeignKey("organizers.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UserMessage(Base):
    __tablename__ = "user_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    from_user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============== Events ==============

class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    organizer_id = Column(String(36), ForeignKey("organizers.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    event_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(500), nullable=False)
    location_link = Column(String(500), nullable=True)
    max_attendees = Column(Integer, nullable=True)
    current_attendees = Column(Integer, default=0)
    is_live = Column(Boolean, default=False)
    status = Column(String(20), default=EventStatus.UPCOMING.value, index=True)
    category = Column(String(50), nullable=True)
    ticket_price = Column(Float, nullable=True)
    ticket_link = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    organizer = relationship("Organizer", back_populates="events")
    ticket_types = relationship("TicketType", back_populates="event", cascade="all, delete-orphan")


class PlatformEvent(Base):
    """Events curated by admins that have no organizer account behind them."""
    __tablename__ = "platform_events"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    organizer_name = Column(String(255), nullable=False)
    event_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    location = Column(String(500), nullable=False)
    location_link = Column(String(500), nullable=True)
    max_attendees = Column(Integer, nullable=True)
    is_live = Column(Boolean, default=False)
    status = Column(String(20), default=PlatformEventStatus.UPCOMING.value, index=True)
    category = Column(String(50), nullable=True)
    ticket_price = Column(Float, nullable=True)
    ticket_link = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class EventLike(Base):
    __tablename__ = "event_likes"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_like"),)

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class EventComment(Base):
    __tablename__ = "event_comments"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class EventRegistration(Base):
    __tablename__ = "event_registrations"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    attendance_confirmed = Column(Boolean, default=False)
    attendance_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============== Tickets ==============

class TicketType(Base):
    __tablename__ = "ticket_types"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False, default=0)  # BRL, not cents
    quantity_available = Column(Integer, nullable=True)
    quantity_sold = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    event = relationship("Event", back_populates="ticket_types")


class EventTicketSettings(Base):
    __tablename__ = "event_ticket_settings"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(36), ForeignKey("events.id"), unique=True, nullable=False)
    platform_fee_percentage = Column(Float, default=0, nullable=False)
    payment_processing_fee_percentage = Column(Float, default=0, nullable=False)
    payment_processing_fee_fixed = Column(Float, default=0, nullable=False)
    fee_payer = Column(String(20), default=FeePayer.BUYER.value, nullable=False)


class TicketSale(Base):
    __tablename__ = "ticket_sales"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    ticket_type_id = Column(String(36), ForeignKey("ticket_types.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False)
    subtotal = Column(Float, nullable=False)
    platform_fee = Column(Float, nullable=False, default=0)
    payment_processing_fee = Column(Float, nullable=False, default=0)
    total_amount = Column(Float, nullable=False)
    buyer_name = Column(String(255), nullable=False)
    buyer_email = Column(String(255), nullable=False)
    buyer_phone = Column(String(50), nullable=True)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, index=True)
    stripe_checkout_session_id = Column(String(255), nullable=True, unique=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============== Reference data ==============

class City(Base):
    __tablename__ = "cities"
    __table_args__ = (UniqueConstraint("name", "state", "country", name="uq_city"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    state = Column(String(2), nullable=False)
    country = Column(String(100), nullable=False)
