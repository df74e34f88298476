"""Tests for the waitlist and claim protocol."""

from datetime import date, datetime, time, timedelta

import pytest
from conftest import FAR_DATE, FAR_TIME, NOW, run_concurrently

from studio.domain.catalog import ServiceKey
from studio.domain.waitlist.service import WaitlistService, run_waitlist_sweep
from studio.errors import (
    AlreadyBookedError,
    DuplicateWaitlistError,
    NotFoundError,
    PermissionDeniedError,
    SlotNoLongerAvailableError,
    TokenInvalidError,
    ValidationError,
)
from studio.models import Appointment, AppointmentStatus, User, WaitlistEntry, WaitlistStatus
from studio.services.notification_service import NotificationEvent


@pytest.fixture
def waitlist(db, clock):
    return WaitlistService(db, clock)


@pytest.fixture
def full_slot(make_user, reserve):
    """Four Personal Training bookings: the far slot is at its cap."""
    return [reserve(make_user()) for _ in range(4)]


def _free_one_seat(db, appointments):
    appointments[0].status = AppointmentStatus.CANCELLED
    db.commit()


class TestJoinWaitlist:
    """Tests for joining the queue."""

    def test_join_full_slot(self, waitlist, make_user, full_slot):
        user = make_user(credits=1)
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)

        assert entry.status == WaitlistStatus.WAITING
        assert entry.service == ServiceKey.EP
        assert entry.notify_token is None

    def test_slot_with_room(self, waitlist, make_user):
        with pytest.raises(ValidationError):
            waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)

    def test_single_seat_service_has_no_waitlist(self, waitlist, make_user, reserve):
        reserve(make_user(), service=ServiceKey.RA)
        with pytest.raises(ValidationError):
            waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME, "RA")

    def test_past_slot(self, waitlist, make_user):
        with pytest.raises(ValidationError):
            waitlist.join_waitlist(make_user(), date(2026, 3, 2), time(8, 0))

    def test_already_booked_there(self, waitlist, full_slot):
        with pytest.raises(AlreadyBookedError):
            waitlist.join_waitlist(full_slot[0].user, FAR_DATE, FAR_TIME)

    def test_duplicate_entry(self, waitlist, make_user, full_slot):
        user = make_user()
        waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        with pytest.raises(DuplicateWaitlistError):
            waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)

    def test_can_rejoin_after_withdrawing(self, waitlist, make_user, full_slot):
        user = make_user()
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        waitlist.withdraw(user, entry.id)

        assert waitlist.join_waitlist(user, FAR_DATE, FAR_TIME).status == WaitlistStatus.WAITING


class TestNotifySlot:
    """Tests for broadcasting a freed seat."""

    @pytest.mark.asyncio
    async def test_full_slot_notifies_nobody(self, waitlist, queue, make_user, full_slot):
        waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)

        assert await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue) == []
        assert queue.sent == []

    @pytest.mark.asyncio
    async def test_freed_seat_notifies_every_waiter(self, db, waitlist, queue, make_user, full_slot):
        first = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        second = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)

        notified = await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)

        assert sorted(notified) == sorted([first.id, second.id])
        db.refresh(first)
        db.refresh(second)
        assert first.status == second.status == WaitlistStatus.NOTIFIED
        assert first.notify_token and second.notify_token
        assert first.notify_token != second.notify_token
        # 49h away: the token lives 48h, not until the slot
        assert first.notify_token_expires_at == NOW + timedelta(hours=48)

        sent = queue.of_type(NotificationEvent.WAITLIST_SLOT_AVAILABLE)
        assert {n["recipient"] for n in sent} == {first.user.email, second.user.email}
        assert any(first.notify_token in n["payload"]["claim_url"] for n in sent)

    @pytest.mark.asyncio
    async def test_token_expires_with_slot_when_sooner(self, db, clock, queue, make_user, reserve):
        slot_date, slot_time = date(2026, 3, 3), time(10, 0)
        booked = [reserve(make_user(), slot_date, slot_time) for _ in range(4)]
        service = WaitlistService(db, clock)
        entry = service.join_waitlist(make_user(), slot_date, slot_time)
        _free_one_seat(db, booked)

        await service.notify_slot(slot_date, slot_time, queue)

        db.refresh(entry)
        assert entry.notify_token_expires_at == NOW + timedelta(hours=25)

    @pytest.mark.asyncio
    async def test_enqueue_failure_reverts_to_waiting(self, db, waitlist, queue, make_user, full_slot):
        entry = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        queue.fail_with = RuntimeError("redis unavailable")

        assert await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue) == []

        db.refresh(entry)
        assert entry.status == WaitlistStatus.WAITING
        assert entry.notify_token is None
        assert "redis unavailable" in entry.last_notify_error


class TestClaim:
    """Tests for redeeming claim tokens."""

    @pytest.mark.asyncio
    async def test_second_claim_for_one_seat_is_refused(self, db, waitlist, queue, make_user, full_slot):
        """Two notified members, one seat: one booking, one refusal, one debit."""
        alice, bob = make_user(credits=4), make_user(credits=4)
        alice_entry = waitlist.join_waitlist(alice, FAR_DATE, FAR_TIME)
        bob_entry = waitlist.join_waitlist(bob, FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(alice_entry)
        db.refresh(bob_entry)
        alice_token, bob_token = alice_entry.notify_token, bob_entry.notify_token

        appointment = waitlist.claim(alice, alice_token)
        with pytest.raises(SlotNoLongerAvailableError):
            waitlist.claim(bob, bob_token)

        db.refresh(alice)
        db.refresh(bob)
        assert appointment.user_id == alice.id
        assert appointment.credit_lot_id == alice.credit_lots[0].id
        assert alice.credits + bob.credits == 7
        reserved = (
            db.query(Appointment)
            .filter(Appointment.date == FAR_DATE, Appointment.status == AppointmentStatus.RESERVED)
            .count()
        )
        assert reserved == 4

        db.refresh(alice_entry)
        db.refresh(bob_entry)
        assert alice_entry.status == WaitlistStatus.CLAIMED
        assert alice_entry.notify_token is None
        assert bob_entry.status == WaitlistStatus.NOTIFIED

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, db, waitlist, queue, make_user, full_slot):
        user = make_user(credits=2)
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(entry)
        token = entry.notify_token

        waitlist.claim(user, token)
        with pytest.raises(TokenInvalidError):
            waitlist.claim(user, token)

    @pytest.mark.asyncio
    async def test_token_of_another_member(self, db, waitlist, queue, make_user, full_slot):
        owner, thief = make_user(credits=2), make_user(credits=2)
        entry = waitlist.join_waitlist(owner, FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(entry)

        with pytest.raises(TokenInvalidError):
            waitlist.claim(thief, entry.notify_token)

    @pytest.mark.asyncio
    async def test_expired_token(self, db, clock, waitlist, queue, make_user, full_slot):
        user = make_user(credits=2)
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(entry)
        clock.advance(hours=48, minutes=1)

        with pytest.raises(TokenInvalidError):
            waitlist.claim(user, entry.notify_token)

    def test_unknown_token(self, waitlist, make_user):
        with pytest.raises(TokenInvalidError):
            waitlist.claim(make_user(), "not-a-token")

    @pytest.mark.asyncio
    async def test_claim_checks_credits(self, db, waitlist, queue, make_user, full_slot):
        from studio.errors import InsufficientCreditsError

        user = make_user()
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(entry)

        with pytest.raises(InsufficientCreditsError):
            waitlist.claim(user, entry.notify_token)
        db.refresh(entry)
        assert entry.status == WaitlistStatus.NOTIFIED

    @pytest.mark.asyncio
    async def test_claimable_returns_entry_with_room(self, db, waitlist, queue, make_user, full_slot):
        user = make_user(credits=2)
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        assert waitlist.claimable(user) is None

        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)

        assert waitlist.claimable(user).id == entry.id


class TestConcurrentClaims:
    """Claims racing on separate connections to a file-backed database."""

    @pytest.fixture
    def engine(self, file_engine):
        return file_engine

    @pytest.mark.asyncio
    async def test_exactly_one_claim_wins_a_single_seat(
        self, db, engine, clock, waitlist, queue, make_user, full_slot
    ):
        """Six notified members claim the one freed seat at the same moment."""
        members = [make_user(credits=2) for _ in range(6)]
        entries = [waitlist.join_waitlist(m, FAR_DATE, FAR_TIME) for m in members]
        _free_one_seat(db, full_slot)
        assert len(await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)) == 6

        tokens = {}
        for member, entry in zip(members, entries):
            db.refresh(entry)
            tokens[member.id] = entry.notify_token
        db.commit()

        def claimer(user_id):
            def _claim(session):
                user = session.get(User, user_id)
                WaitlistService(session, clock).claim(user, tokens[user_id])

            return _claim

        outcomes = run_concurrently(engine, [claimer(m.id) for m in members])

        assert outcomes.count("ok") == 1
        assert outcomes.count("SlotNoLongerAvailableError") == 5

        db.expire_all()
        reserved = (
            db.query(Appointment)
            .filter(Appointment.date == FAR_DATE, Appointment.status == AppointmentStatus.RESERVED)
            .count()
        )
        assert reserved == 4
        assert sum(db.get(User, m.id).credits for m in members) == 11
        claimed = db.query(WaitlistEntry).filter(WaitlistEntry.status == WaitlistStatus.CLAIMED).count()
        assert claimed == 1


class TestWithdraw:
    """Tests for leaving the waitlist."""

    def test_withdraw_own_entry(self, waitlist, make_user, full_slot):
        user = make_user()
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)

        assert waitlist.withdraw(user, entry.id).status == WaitlistStatus.CANCELLED

    def test_withdraw_someone_elses_entry(self, waitlist, make_user, full_slot):
        entry = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        with pytest.raises(PermissionDeniedError):
            waitlist.withdraw(make_user(), entry.id)

    def test_withdraw_twice(self, waitlist, make_user, full_slot):
        user = make_user()
        entry = waitlist.join_waitlist(user, FAR_DATE, FAR_TIME)
        waitlist.withdraw(user, entry.id)
        with pytest.raises(ValidationError):
            waitlist.withdraw(user, entry.id)

    def test_withdraw_unknown(self, waitlist, make_user):
        with pytest.raises(NotFoundError):
            waitlist.withdraw(make_user(), "missing")


class TestWaitlistSweep:
    """Tests for the periodic sweep."""

    @pytest.mark.asyncio
    async def test_sweep_notifies_and_is_idempotent(self, db, clock, waitlist, queue, make_user, full_slot):
        waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)

        first = await run_waitlist_sweep(db, queue, clock)
        second = await run_waitlist_sweep(db, queue, clock)

        assert first["notified"] == 1
        assert second["notified"] == 0
        assert len(queue.of_type(NotificationEvent.WAITLIST_SLOT_AVAILABLE)) == 1

    @pytest.mark.asyncio
    async def test_sweep_retries_failed_enqueue(self, db, clock, waitlist, queue, make_user, full_slot):
        entry = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        queue.fail_with = RuntimeError("redis unavailable")
        await run_waitlist_sweep(db, queue, clock)

        queue.fail_with = None
        result = await run_waitlist_sweep(db, queue, clock)

        assert result["notified"] == 1
        db.refresh(entry)
        assert entry.status == WaitlistStatus.NOTIFIED

    @pytest.mark.asyncio
    async def test_lapsed_token_goes_back_to_waiting_and_is_renotified(
        self, db, clock, waitlist, queue, make_user, full_slot
    ):
        entry = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        _free_one_seat(db, full_slot)
        await waitlist.notify_slot(FAR_DATE, FAR_TIME, queue)
        db.refresh(entry)
        old_token = entry.notify_token

        clock.advance(hours=48, minutes=1)
        result = await run_waitlist_sweep(db, queue, clock)

        db.refresh(entry)
        assert result["requeued"] == 1
        assert result["notified"] == 1
        assert entry.status == WaitlistStatus.NOTIFIED
        assert entry.notify_token != old_token
        # 59 minutes left: the new token expires with the slot
        assert entry.notify_token_expires_at == datetime.combine(FAR_DATE, FAR_TIME)

    @pytest.mark.asyncio
    async def test_started_slot_expires_entries(self, db, clock, waitlist, make_user, queue, full_slot):
        entry = waitlist.join_waitlist(make_user(), FAR_DATE, FAR_TIME)
        clock.advance(hours=49)

        result = await run_waitlist_sweep(db, queue, clock)

        db.refresh(entry)
        assert result["expired"] == 1
        assert entry.status == WaitlistStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_sweep_without_waiters(self, db, clock, queue):
        result = await run_waitlist_sweep(db, queue, clock)
        assert result == {"expired": 0, "requeued": 0, "notified": 0, "slots": 0}
        assert db.query(WaitlistEntry).count() == 0
