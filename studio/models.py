import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .domain.catalog import CreditScope, ServiceKey
from .domain.membership.rules import Membership, MembershipTier
from .shared.clock import get_clock


def venue_now():
    """Row timestamps use the venue wall clock, like every other stored time"""
    return get_clock().now()


def generate_id():
    """Generate an opaque string identifier"""
    return str(uuid.uuid4())


def _enum(enum_cls, name):
    # Store enum values ("EP", "plus") rather than member names
    return Enum(enum_cls, name=name, native_enum=False, values_callable=lambda e: [m.value for m in e])


class UserRole:
    CLIENT = "client"
    PROFESSOR = "professor"
    ADMIN = "admin"


class AppointmentStatus:
    RESERVED = "reserved"
    CANCELLED = "cancelled"


class WaitlistStatus:
    WAITING = "waiting"
    NOTIFIED = "notified"
    CLAIMED = "claimed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    ACTIVE = (WAITING, NOTIFIED)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), default=UserRole.CLIENT, nullable=False)  # client, professor, admin
    suspended = Column(Boolean, default=False, nullable=False)

    # Medical clearance ("apto medico") - required 20 days after sign-up
    medical_clearance_path = Column(String(500), nullable=True)
    medical_clearance_status = Column(String(20), nullable=True)  # uploaded, approved, rejected

    # Membership (basic / plus)
    membership_tier = Column(
        _enum(MembershipTier, "membership_tier"), default=MembershipTier.BASIC, nullable=False
    )
    membership_active_until = Column(DateTime, nullable=True)

    # Rolling cancellation quota, reset lazily once the 30-day window has elapsed
    cancellations_used = Column(Integer, default=0, nullable=False)
    cancellation_window_started_at = Column(DateTime, nullable=True)

    # Cached sum of spendable lots, refreshed by the credit ledger
    credits = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=venue_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=venue_now, server_default=func.now(), onupdate=venue_now)

    credit_lots = relationship(
        "CreditLot", back_populates="user", cascade="all, delete-orphan", order_by="CreditLot.created_at"
    )
    appointments = relationship("Appointment", back_populates="user", cascade="all, delete-orphan")
    waitlist_entries = relationship(
        "WaitlistEntry", back_populates="user", cascade="all, delete-orphan"
    )
    history = relationship(
        "UserHistory", back_populates="user", cascade="all, delete-orphan", order_by="UserHistory.id"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.name or ''} {self.last_name or ''}".strip() or self.email

    @property
    def has_medical_clearance(self) -> bool:
        return bool(self.medical_clearance_path)

    @property
    def membership(self) -> Membership:
        tier = self.membership_tier or MembershipTier.BASIC
        if tier == MembershipTier.PLUS and self.membership_active_until is None:
            tier = MembershipTier.BASIC
        return Membership(tier=tier, active_until=self.membership_active_until)


class CreditLot(Base):
    """A discrete grant of credits with its own expiry and service scope"""

    __tablename__ = "credit_lots"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    service_scope = Column(_enum(CreditScope, "credit_scope"), nullable=False, default=CreditScope.EP)
    amount = Column(Integer, nullable=False)
    remaining = Column(Integer, nullable=False)
    expires_at = Column(DateTime, nullable=True)  # absolute, never extended
    source = Column(String(50), nullable=False, default="")  # purchase, admin, promo
    created_at = Column(DateTime, default=venue_now, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="credit_lots")


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    service = Column(_enum(ServiceKey, "service_key"), nullable=False)
    status = Column(String(20), default=AppointmentStatus.RESERVED, nullable=False, index=True)
    coach = Column(String(255), nullable=True)

    # Lot the credit was taken from, so cancellation refunds the same lot
    credit_lot_id = Column(String(36), nullable=True)
    credit_expires_at = Column(DateTime, nullable=True)

    cancelled_at = Column(DateTime, nullable=True)

    # Reminder sweep bookkeeping (claimed before sending, released on failure)
    reminder_sent_at = Column(DateTime, nullable=True)
    reminder_last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=venue_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=venue_now, server_default=func.now(), onupdate=venue_now)

    user = relationship("User", back_populates="appointments")

    __table_args__ = (
        # One reserved appointment per single-seat service per slot; EP is multi-seat
        Index(
            "uq_appointments_single_seat_slot",
            "date",
            "time",
            "service",
            unique=True,
            postgresql_where=text("status = 'reserved' AND service <> 'EP'"),
            sqlite_where=text("status = 'reserved' AND service <> 'EP'"),
        ),
        # A user cannot hold two reserved appointments at the same time
        Index(
            "uq_appointments_user_slot",
            "date",
            "time",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'reserved'"),
            sqlite_where=text("status = 'reserved'"),
        ),
        Index("ix_appointments_slot", "date", "time", "status"),
    )


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    service = Column(_enum(ServiceKey, "waitlist_service_key"), nullable=False, default=ServiceKey.EP)

    # waiting -> notified -> claimed, or cancelled / expired
    status = Column(String(20), default=WaitlistStatus.WAITING, nullable=False)

    # Single-use claim token minted when a seat frees up
    notify_token = Column(String(128), nullable=True, unique=True)
    notify_token_expires_at = Column(DateTime, nullable=True)

    notified_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)
    last_notify_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=venue_now, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=venue_now, server_default=func.now(), onupdate=venue_now)

    user = relationship("User", back_populates="waitlist_entries")

    __table_args__ = (
        Index(
            "uq_waitlist_active_entry",
            "user_id",
            "date",
            "time",
            "service",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'notified')"),
            sqlite_where=text("status IN ('waiting', 'notified')"),
        ),
        Index("ix_waitlist_slot", "date", "time", "service", "status"),
    )


class UserHistory(Base):
    """Audit trail of bookings, cancellations and credit grants shown on the profile"""

    __tablename__ = "user_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    date = Column(Date, nullable=True)
    time = Column(Time, nullable=True)
    service = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=venue_now, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="history")


class SlotLock(Base):
    """Row locked FOR UPDATE to serialize writers competing for one slot"""

    __tablename__ = "slot_locks"

    date = Column(Date, primary_key=True)
    time = Column(Time, primary_key=True)
    version = Column(Integer, nullable=False, default=0)
