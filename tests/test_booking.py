"""Tests for booking appointments."""

from datetime import date, datetime, time, timedelta

import pytest
from conftest import FAR_DATE, FAR_TIME, NOW, run_concurrently
from sqlalchemy.exc import OperationalError

from studio.database import run_in_transaction
from studio.domain.catalog import ServiceKey
from studio.domain.credits import ledger
from studio.domain.scheduling.capacity import analyze_slot
from studio.domain.scheduling.service import BookingService, check_eligibility
from studio.errors import (
    AccountSuspendedError,
    DuplicateBookingError,
    ElasticCapReachedError,
    InsufficientCreditsError,
    MedicalClearanceRequiredError,
    NotFoundError,
    OperationFailedError,
    PermissionDeniedError,
    ServiceSlotTakenError,
    SlotFullError,
    ValidationError,
)
from studio.models import Appointment, AppointmentStatus, User, UserHistory, UserRole
from studio.shared import clock as clock_module


@pytest.fixture
def booking(db, clock):
    return BookingService(db, clock)


class TestBookAppointment:
    """Tests for the happy path."""

    def test_booking_debits_one_credit_from_the_lot(self, db, booking, make_user):
        """A 4-credit EP lot drops to 3 after one EP booking."""
        user = make_user(credits=4)
        lot = user.credit_lots[0]

        appointment = booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

        db.refresh(lot)
        assert lot.remaining == 3
        assert user.credits == 3
        assert appointment.status == AppointmentStatus.RESERVED
        assert appointment.service == ServiceKey.EP
        assert appointment.credit_lot_id == lot.id
        assert appointment.credit_expires_at == lot.expires_at

    def test_accepts_display_name(self, booking, make_user):
        """Should resolve legacy display names to service keys."""
        user = make_user(credits=1, scope="ALL")
        appointment = booking.book_appointment(user, FAR_DATE, FAR_TIME, "Rehabilitación Activa")
        assert appointment.service == ServiceKey.RA

    def test_writes_history(self, db, booking, make_user):
        user = make_user(credits=1)
        booking.book_appointment(user, FAR_DATE, FAR_TIME, ServiceKey.EP)

        history = db.query(UserHistory).filter(UserHistory.user_id == user.id).all()
        assert [h.action for h in history] == ["reserved"]
        assert history[0].date == FAR_DATE
        assert history[0].service == "EP"


class TestEligibility:
    """Tests for who may book."""

    def test_suspended_user(self, booking, make_user):
        user = make_user(credits=2, suspended=True)
        with pytest.raises(AccountSuspendedError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

    def test_missing_medical_clearance_after_grace_period(self, booking, make_user):
        """Should require clearance 20 days after sign-up."""
        user = make_user(credits=2, created_at=NOW - timedelta(days=21))
        with pytest.raises(MedicalClearanceRequiredError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

    def test_clearance_on_file_allows_booking(self, booking, make_user):
        user = make_user(
            credits=2, created_at=NOW - timedelta(days=90), medical_clearance_path="clearances/ana.pdf"
        )
        assert booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP").id

    def test_no_credits(self, booking, make_user):
        user = make_user()
        with pytest.raises(InsufficientCreditsError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

    def test_credits_for_another_service_do_not_count(self, booking, make_user):
        user = make_user(credits=3, scope="RA")
        with pytest.raises(InsufficientCreditsError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

    def test_expired_credits_do_not_count(self, booking, clock, make_user):
        user = make_user(credits=3, medical_clearance_path="clearances/ana.pdf")
        clock.advance(days=30)
        with pytest.raises(InsufficientCreditsError):
            booking.book_appointment(user, date(2026, 4, 2), FAR_TIME, "EP")

    def test_grace_period_counts_from_venue_signup_time(self, db, clock, monkeypatch):
        """Sign-up is stamped with the venue clock, so the 20 days are exact."""
        monkeypatch.setattr(clock_module, "_default_clock", clock)
        user = User(name="Ana", last_name="Diaz", email="ana@example.com")
        db.add(user)
        db.flush()
        ledger.add_lot(user, 1, "ALL", "purchase", NOW)
        db.commit()

        assert user.created_at == NOW
        assert user.updated_at == NOW
        check_eligibility(user, ServiceKey.EP, NOW + timedelta(days=20))
        with pytest.raises(MedicalClearanceRequiredError):
            check_eligibility(user, ServiceKey.EP, NOW + timedelta(days=20, hours=1))


class TestSlotValidation:
    """Tests for service hours and the booking window."""

    @pytest.mark.parametrize(
        "slot_date,slot_time,service",
        [
            (FAR_DATE, time(13, 0), "EP"),  # lunch break
            (FAR_DATE, time(6, 0), "EP"),  # before opening
            (FAR_DATE, time(21, 0), "EP"),  # after closing
            (FAR_DATE, time(10, 30), "EP"),  # not on the hour
            (FAR_DATE, time(15, 0), "RA"),  # afternoon is Personal Training only
            (date(2026, 3, 7), time(18, 0), "EP"),  # Saturday evening
            (date(2026, 3, 2), time(8, 0), "EP"),  # already started
            (date(2026, 4, 3), time(10, 0), "EP"),  # more than 31 days ahead
        ],
    )
    def test_rejects_invalid_slots(self, booking, make_user, slot_date, slot_time, service):
        user = make_user(credits=2, scope="ALL")
        with pytest.raises(ValidationError):
            booking.book_appointment(user, slot_date, slot_time, service)

    def test_rejects_unknown_service(self, booking, make_user):
        user = make_user(credits=2)
        with pytest.raises(ValidationError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "YOGA")

    def test_afternoon_personal_training_is_allowed(self, booking, make_user):
        user = make_user(credits=1)
        assert booking.book_appointment(user, FAR_DATE, time(15, 0), "EP").id


class TestCapacity:
    """Tests for capacity errors."""

    def test_duplicate_booking(self, booking, make_user):
        user = make_user(credits=3, scope="ALL")
        booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")
        with pytest.raises(DuplicateBookingError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "NUT")

    def test_single_seat_service_taken(self, booking, make_user, reserve):
        reserve(make_user(), service=ServiceKey.RA)
        user = make_user(credits=1, scope="RA")
        with pytest.raises(ServiceSlotTakenError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "RA")

    def test_elastic_cap_far_from_slot(self, booking, make_user, reserve):
        for _ in range(4):
            reserve(make_user())
        user = make_user(credits=1)
        with pytest.raises(ElasticCapReachedError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "EP")

    def test_room_full(self, booking, make_user, reserve):
        for _ in range(4):
            reserve(make_user())
        reserve(make_user(), service=ServiceKey.RA)
        reserve(make_user(), service=ServiceKey.RF)
        user = make_user(credits=1, scope="NUT")
        with pytest.raises(SlotFullError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "NUT")

    def test_near_slot_opens_extra_elastic_seat(self, db, booking, make_user, reserve):
        """One hour out with one single-seat booking, a fifth EP seat opens and then the room is full."""
        slot_date, slot_time = date(2026, 3, 2), time(10, 0)
        reserve(make_user(), slot_date, slot_time, ServiceKey.RA)
        for _ in range(4):
            reserve(make_user(), slot_date, slot_time)

        fifth = booking.book_appointment(make_user(credits=1), slot_date, slot_time, "EP")
        assert fifth.status == AppointmentStatus.RESERVED

        with pytest.raises(SlotFullError):
            booking.book_appointment(make_user(credits=1), slot_date, slot_time, "EP")

    def test_elastic_count_never_exceeds_cap(self, db, booking, make_user):
        """Every accepted EP booking stays within the cap at its creation time."""
        accepted = 0
        for _ in range(6):
            try:
                booking.book_appointment(make_user(credits=1), FAR_DATE, FAR_TIME, "EP")
                accepted += 1
            except ElasticCapReachedError:
                pass
        assert accepted == 4

    def test_storage_conflict_becomes_slot_full(self, db, booking, make_user, reserve, monkeypatch):
        """A racing writer caught by the unique index surfaces as SlotFullError and debits nothing."""
        reserve(make_user(), service=ServiceKey.AR)
        user = make_user(credits=2, scope="AR")
        lot = user.credit_lots[0]

        def stale_metrics(slot_date, slot_time, now=None):
            return analyze_slot([], datetime.combine(slot_date, slot_time), now or NOW)

        monkeypatch.setattr(booking, "slot_metrics", stale_metrics)

        with pytest.raises(SlotFullError):
            booking.book_appointment(user, FAR_DATE, FAR_TIME, "AR")

        db.refresh(lot)
        assert lot.remaining == 2
        reserved = db.query(Appointment).filter(Appointment.service == ServiceKey.AR).count()
        assert reserved == 1


class TestConcurrentBookings:
    """Bookings racing on separate connections to a file-backed database."""

    @pytest.fixture
    def engine(self, file_engine):
        return file_engine

    @staticmethod
    def _booker(clock, user_id, service):
        def _book(session):
            user = session.get(User, user_id)
            BookingService(session, clock).book_appointment(user, FAR_DATE, FAR_TIME, service)

        return _book

    def test_elastic_cap_holds_under_concurrent_bookings(self, db, engine, clock, make_user):
        """Eight members book Personal Training far from the slot: the cap of four holds."""
        members = [make_user(credits=1) for _ in range(8)]

        outcomes = run_concurrently(engine, [self._booker(clock, m.id, ServiceKey.EP) for m in members])

        assert outcomes.count("ok") == 4
        assert outcomes.count("ElasticCapReachedError") == 4

        db.expire_all()
        reserved = db.query(Appointment).filter(Appointment.status == AppointmentStatus.RESERVED).count()
        assert reserved == 4
        assert sum(db.get(User, m.id).credits for m in members) == 4

    def test_single_seat_service_goes_to_one_member(self, db, engine, clock, make_user):
        members = [make_user(credits=1, scope="RA") for _ in range(3)]

        outcomes = run_concurrently(engine, [self._booker(clock, m.id, ServiceKey.RA) for m in members])

        assert outcomes.count("ok") == 1
        assert outcomes.count("ServiceSlotTakenError") == 2
        db.expire_all()
        assert db.query(Appointment).filter(Appointment.service == ServiceKey.RA).count() == 1


class TestStaffBooking:
    """Tests for admins booking on behalf of members."""

    def test_admin_books_for_member_without_charge(self, booking, make_user):
        admin = make_user(name="Admin", role=UserRole.ADMIN)
        member = make_user(created_at=NOW - timedelta(days=60))

        appointment = booking.book_appointment(admin, FAR_DATE, FAR_TIME, "EP", target_user_id=member.id)

        assert appointment.user_id == member.id
        assert appointment.credit_lot_id is None

    def test_member_cannot_book_for_someone_else(self, booking, make_user):
        member = make_user(credits=2)
        other = make_user(credits=2)
        with pytest.raises(PermissionDeniedError):
            booking.book_appointment(member, FAR_DATE, FAR_TIME, "EP", target_user_id=other.id)

    def test_unknown_target(self, booking, make_user):
        admin = make_user(name="Admin", role=UserRole.ADMIN)
        with pytest.raises(NotFoundError):
            booking.book_appointment(admin, FAR_DATE, FAR_TIME, "EP", target_user_id="nope")


class TestRunInTransaction:
    """Tests for transaction retries."""

    @staticmethod
    def _locked():
        return OperationalError("UPDATE slot_locks", {}, Exception("database is locked"))

    def test_retries_transient_failures(self, db):
        attempts = []

        def operation(session):
            attempts.append(1)
            if len(attempts) < 3:
                raise self._locked()
            return "done"

        assert run_in_transaction(db, operation, retries=3) == "done"
        assert len(attempts) == 3

    def test_gives_up_with_operation_failed(self, db):
        def operation(session):
            raise self._locked()

        with pytest.raises(OperationFailedError):
            run_in_transaction(db, operation, retries=2)
