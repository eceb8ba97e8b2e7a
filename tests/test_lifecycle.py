"""
Tests for membership status arithmetic and the lifecycle engine.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from database.errors import StatementFailure
from lifecycle.engine import MembershipLifecycle
from lifecycle.status import classify, member_status, renewal_end_date, tenor_days
from models.schemas import (
    Member, MemberStatus, MembershipType, PaymentMode, ReminderType,
)
from notifications.scheduler import NotificationScheduler

AS_OF = date(2024, 3, 10)


def _member(name: str, end: date, active: bool = True) -> Member:
    return Member(
        name=name, phone="9800000000",
        membership_type=MembershipType.MONTHLY,
        start_date=date(2024, 1, 1), end_date=end, is_active=active,
    )


class ExplodingNotifier(NotificationScheduler):
    async def schedule(self, title, body, at, metadata=None):
        raise ConnectionError("notification service down")


# ──────────────────────────────────────────────────────────────
#  Pure status functions
# ──────────────────────────────────────────────────────────────

class TestClassify:
    def test_boundaries(self):
        members = {
            "yesterday": _member("yesterday", AS_OF - timedelta(days=1)),
            "today": _member("today", AS_OF),
            "plus3": _member("plus3", AS_OF + timedelta(days=3)),
            "plus7": _member("plus7", AS_OF + timedelta(days=7)),
            "plus8": _member("plus8", AS_OF + timedelta(days=8)),
        }
        result = classify(members.values(), AS_OF)

        assert {m.name for m in result.expired} == {"yesterday"}
        assert {m.name for m in result.renewing} == {"today", "plus3", "plus7"}
        assert {m.name for m in result.active} == {"plus8"}
        assert len(result.all) == 5

    def test_partitions_are_exclusive(self):
        members = [_member(f"m{i}", AS_OF + timedelta(days=i)) for i in range(-3, 12)]
        result = classify(members, AS_OF)
        ids = [m.id for m in result.renewing + result.expired + result.active]
        assert len(ids) == len(set(ids)) == len(members)

    def test_inactive_members(self):
        lapsed = _member("lapsed", AS_OF - timedelta(days=5), active=False)
        paused = _member("paused", AS_OF + timedelta(days=3), active=False)
        result = classify([lapsed, paused], AS_OF)
        assert [m.name for m in result.expired] == ["lapsed"]
        assert result.renewing == []
        assert result.active == []
        assert len(result.all) == 2

    def test_datetime_truncated_to_day(self):
        late_evening = datetime(2024, 3, 10, 23, 59, tzinfo=timezone.utc)
        result = classify([_member("today", AS_OF)], late_evening)
        assert [m.name for m in result.renewing] == ["today"]

    def test_member_status(self):
        assert member_status(_member("a", AS_OF + timedelta(days=30)), AS_OF) == MemberStatus.ACTIVE
        assert member_status(_member("b", AS_OF + timedelta(days=7)), AS_OF) == MemberStatus.EXPIRING
        assert member_status(_member("c", AS_OF - timedelta(days=1)), AS_OF) == MemberStatus.EXPIRED
        assert member_status(_member("d", AS_OF + timedelta(days=30), active=False), AS_OF) \
            == MemberStatus.INACTIVE


class TestTenor:
    def test_tenor_days(self):
        assert tenor_days(MembershipType.MONTHLY) == 30
        assert tenor_days("quarterly") == 90
        assert tenor_days(MembershipType.YEARLY) == 365

    def test_renewal_is_additive_days(self):
        assert renewal_end_date(date(2024, 1, 1), MembershipType.MONTHLY) == date(2024, 1, 31)
        assert renewal_end_date(date(2024, 1, 31), MembershipType.MONTHLY) == date(2024, 3, 1)
        assert renewal_end_date(date(2024, 1, 1), MembershipType.YEARLY) == date(2024, 12, 31)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            tenor_days("weekly")


# ──────────────────────────────────────────────────────────────
#  Member creation & reminders
# ──────────────────────────────────────────────────────────────

class TestMemberCreation:
    @pytest.mark.asyncio
    async def test_add_member_creates_two_reminders(self, lifecycle, new_member, notifier):
        member = await lifecycle.add_member(new_member)
        assert member.end_date == date(2024, 1, 31)

        reminders = await lifecycle.store.get_member_reminders(member.id)
        assert [(r.type, r.scheduled_date.date()) for r in reminders] == [
            (ReminderType.PAYMENT, date(2024, 1, 28)),
            (ReminderType.RENEWAL, date(2024, 1, 31)),
        ]
        assert "Asha Verma" in reminders[0].message
        assert "2024-01-31" in reminders[0].message
        assert len(notifier.scheduled) == 2
        assert notifier.scheduled[0]["metadata"]["member_id"] == member.id

    @pytest.mark.asyncio
    async def test_reminder_failure_keeps_member(self, lifecycle, new_member, monkeypatch):
        store = lifecycle.store
        original = store.add_reminder
        calls = []

        async def flaky_add_reminder(reminder):
            calls.append(reminder.type)
            if reminder.type == ReminderType.PAYMENT:
                raise StatementFailure("disk full", "add_reminder")
            return await original(reminder)

        monkeypatch.setattr(store, "add_reminder", flaky_add_reminder)
        member = await lifecycle.add_member(new_member)

        assert calls == [ReminderType.PAYMENT, ReminderType.RENEWAL]
        assert await store.get_member(member.id) is not None
        reminders = await store.get_member_reminders(member.id)
        assert [r.type for r in reminders] == [ReminderType.RENEWAL]

    @pytest.mark.asyncio
    async def test_notification_failure_is_not_fatal(self, store, new_member):
        lifecycle = MembershipLifecycle(store, notifier=ExplodingNotifier())
        member = await lifecycle.add_member(new_member)
        assert len(await store.get_member_reminders(member.id)) == 2

    @pytest.mark.asyncio
    async def test_custom_reminder(self, lifecycle, new_member, notifier):
        member = await lifecycle.add_member(new_member)
        at = datetime(2024, 1, 20, 9, tzinfo=timezone.utc)
        reminder = await lifecycle.send_custom_reminder(member, title="Locker", message="Clear your locker", at=at)
        assert reminder.type == ReminderType.CUSTOM
        assert reminder.scheduled_date == at
        assert notifier.scheduled[-1]["title"] == "Locker"


# ──────────────────────────────────────────────────────────────
#  Payments
# ──────────────────────────────────────────────────────────────

class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_end_to_end_monthly(self, lifecycle, new_member):
        member = await lifecycle.add_member(new_member)
        transaction, updated = await lifecycle.record_payment(
            member, 1500, date(2024, 1, 1), PaymentMode.CASH,
        )
        assert transaction.member_id == member.id
        assert transaction.description == "monthly membership payment"
        assert updated.end_date == date(2024, 1, 31)
        assert updated.next_payment_date == date(2024, 1, 31)
        assert updated.last_payment_date == date(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_renewal_counts_from_payment_date(self, lifecycle, make_member):
        member = await lifecycle.add_member(make_member(
            "Quarterly", end=date(2024, 3, 31), active=False,
            membership_type=MembershipType.QUARTERLY,
        ))
        transaction, updated = await lifecycle.record_payment(
            member, 4000, date(2024, 4, 10), "upi", description="Q2",
        )
        assert updated.end_date == date(2024, 4, 10) + timedelta(days=90)
        assert updated.is_active is True
        assert transaction.description == "Q2"
        assert transaction.payment_mode == PaymentMode.UPI

        payments = await lifecycle.store.get_payment_transactions(member.id)
        assert [p.id for p in payments] == [transaction.id]

    @pytest.mark.asyncio
    async def test_member_update_failure_reraises(self, lifecycle, new_member, monkeypatch):
        member = await lifecycle.add_member(new_member)

        async def broken_update(member_id, updates):
            raise StatementFailure("database is locked", "update_member")

        monkeypatch.setattr(lifecycle.store, "update_member", broken_update)
        with pytest.raises(StatementFailure):
            await lifecycle.record_payment(member, 1500, date(2024, 2, 1), PaymentMode.CARD)

        # the transaction stays recorded
        assert len(await lifecycle.store.get_payment_transactions(member.id)) == 1

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self, lifecycle, new_member):
        member = await lifecycle.add_member(new_member)
        with pytest.raises(ValueError):
            await lifecycle.record_payment(member, 0, date(2024, 2, 1), PaymentMode.CASH)
        assert await lifecycle.store.get_payment_transactions(member.id) == []

    @pytest.mark.asyncio
    async def test_payment_ending_before_start_rejected(self, lifecycle, new_member):
        member = await lifecycle.add_member(new_member)
        # 2023-11-01 + 30 days ends before the 2024-01-01 start
        with pytest.raises(ValueError):
            await lifecycle.record_payment(member, 1500, date(2023, 11, 1), PaymentMode.CASH)

        assert await lifecycle.store.get_payment_transactions(member.id) == []
        stored = await lifecycle.store.get_member(member.id)
        assert stored.end_date == date(2024, 1, 31)
        assert len(await lifecycle.store.get_all_members()) == 1


# ──────────────────────────────────────────────────────────────
#  Views & dispatch
# ──────────────────────────────────────────────────────────────

class TestViews:
    @pytest.mark.asyncio
    async def test_active_and_expiring(self, lifecycle, make_member):
        await lifecycle.add_member(make_member("Soon", end=AS_OF + timedelta(days=2)))
        await lifecycle.add_member(make_member("Later", end=AS_OF + timedelta(days=40)))
        await lifecycle.add_member(make_member("Paused", end=AS_OF + timedelta(days=2), active=False))

        active = await lifecycle.get_active_members()
        assert {m.name for m in active} == {"Soon", "Later"}

        expiring = await lifecycle.get_expiring_members(as_of=AS_OF)
        assert [m.name for m in expiring] == ["Soon"]
        wider = await lifecycle.get_expiring_members(days=60, as_of=AS_OF)
        assert {m.name for m in wider} == {"Soon", "Later"}

    @pytest.mark.asyncio
    async def test_partitions(self, lifecycle, make_member):
        await lifecycle.add_member(make_member("Gone", end=AS_OF - timedelta(days=1)))
        await lifecycle.add_member(make_member("Soon", end=AS_OF + timedelta(days=3)))
        partitions = await lifecycle.get_partitions(AS_OF)
        assert [m.name for m in partitions.expired] == ["Gone"]
        assert [m.name for m in partitions.renewing] == ["Soon"]
        assert len(partitions.all) == 2

    @pytest.mark.asyncio
    async def test_upcoming_and_dispatch(self, lifecycle, new_member, notifier):
        member = await lifecycle.add_member(new_member)
        notifier.scheduled.clear()

        as_of = datetime(2024, 1, 27, 12, tzinfo=timezone.utc)
        upcoming = await lifecycle.get_upcoming_reminders(days=7, as_of=as_of)
        assert [r.type for r in upcoming] == [ReminderType.PAYMENT, ReminderType.RENEWAL]

        dispatched = await lifecycle.dispatch_due_reminders(as_of)
        assert [r.type for r in dispatched] == [ReminderType.PAYMENT]
        assert len(notifier.scheduled) == 1

        reminders = await lifecycle.store.get_member_reminders(member.id)
        assert [r.is_sent for r in reminders] == [True, False]

        # sent reminders are not dispatched again
        assert await lifecycle.dispatch_due_reminders(as_of) == []

    @pytest.mark.asyncio
    async def test_dispatch_skips_failed_notifications(self, store, new_member):
        lifecycle = MembershipLifecycle(store, notifier=ExplodingNotifier())
        member = await lifecycle.add_member(new_member)
        dispatched = await lifecycle.dispatch_due_reminders(datetime(2024, 2, 1, tzinfo=timezone.utc))
        assert dispatched == []
        assert not any(r.is_sent for r in await store.get_member_reminders(member.id))

    @pytest.mark.asyncio
    async def test_update_and_delete(self, lifecycle, new_member):
        member = await lifecycle.add_member(new_member)
        assert await lifecycle.update_member(member.id, {"phone": "9000000001"})
        assert (await lifecycle.store.get_member(member.id)).phone == "9000000001"

        assert await lifecycle.delete_member(member.id) is True
        assert await lifecycle.store.get_member_reminders(member.id) == []
