"""
Membership Lifecycle — business rules over the store facade.

Handles:
- Automatic payment/renewal reminders when a member is created
- Payment recording with additive renewal (payment date + tenor)
- Expiry views (active, expiring, partitions)
- Reminder dispatch through the notification scheduler

Reminder creation and notification scheduling are best-effort: their
failures are logged and never undo the member or reminder they follow.
Every other store error propagates unchanged.
"""
from __future__ import annotations

import structlog
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Union

from config.settings import LifecycleConfig, get_settings
from database.store_base import BaseMembershipStore
from lifecycle.status import classify, renewal_end_date
from models.schemas import (
    Member, MemberPartitions, NewMember, NewPayment, NewReminder,
    PaymentMode, PaymentTransaction, Reminder, ReminderType, utcnow,
)
from notifications.scheduler import NotificationScheduler, create_notification_scheduler

logger = structlog.get_logger()


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _today(as_of: Union[date, datetime, None]) -> date:
    if as_of is None:
        return utcnow().date()
    return as_of.date() if isinstance(as_of, datetime) else as_of


class MembershipLifecycle:
    """
    Lifecycle rules for gym members. Stateless apart from its
    collaborators; safe to share across tasks.
    """

    def __init__(
        self,
        store: BaseMembershipStore,
        notifier: NotificationScheduler = None,
        config: LifecycleConfig = None,
    ):
        self.store = store
        self.notifier = notifier or create_notification_scheduler()
        self.config = config or get_settings().lifecycle

    # ── Members ────────────────────────────────────────────

    async def add_member(self, data: NewMember) -> Member:
        """Persist a member, then create its automatic reminders."""
        member = await self.store.add_member(data)
        logger.info("member_added",
                    member_id=member.id,
                    membership_type=member.membership_type.value,
                    end_date=member.end_date.isoformat())
        await self.on_member_created(member)
        return member

    async def on_member_created(self, member: Member) -> list[Reminder]:
        lead = timedelta(days=self.config.payment_reminder_lead_days)
        drafts = [
            NewReminder(
                member_id=member.id,
                type=ReminderType.PAYMENT,
                title="Payment Reminder",
                message=f"Payment reminder for {member.name}. "
                        f"Membership expires on {member.end_date.isoformat()}",
                scheduled_date=_start_of_day(member.end_date - lead),
            ),
            NewReminder(
                member_id=member.id,
                type=ReminderType.RENEWAL,
                title="Membership Renewal",
                message=f"Time to renew membership for {member.name}. "
                        f"Contact gym for renewal.",
                scheduled_date=_start_of_day(member.end_date),
            ),
        ]

        created: list[Reminder] = []
        for draft in drafts:
            try:
                created.append(await self.create_reminder(draft))
            except Exception as e:
                logger.error("automatic_reminder_failed",
                             member_id=member.id,
                             reminder_type=draft.type.value,
                             error=str(e))
        return created

    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        return await self.store.update_member(member_id, updates)

    async def delete_member(self, member_id: str) -> bool:
        deleted = await self.store.delete_member(member_id)
        logger.info("member_deleted", member_id=member_id, existed=deleted)
        return deleted

    async def get_active_members(self) -> list[Member]:
        return [m for m in await self.store.get_all_members() if m.is_active]

    async def get_expiring_members(
        self, days: int = None, as_of: Union[date, datetime, None] = None,
    ) -> list[Member]:
        """Active members whose end date falls on or before as_of + days."""
        if days is None:
            days = self.config.expiring_window_days
        horizon = _today(as_of) + timedelta(days=days)
        return [m for m in await self.get_active_members() if m.end_date <= horizon]

    async def get_partitions(self, as_of: Union[date, datetime, None] = None) -> MemberPartitions:
        members = await self.store.get_all_members()
        return classify(members, _today(as_of), self.config.expiring_window_days)

    # ── Payments ───────────────────────────────────────────

    async def record_payment(
        self,
        member: Member,
        amount: float,
        payment_date: date,
        mode: Union[PaymentMode, str],
        description: Optional[str] = None,
    ) -> tuple[PaymentTransaction, Member]:
        """
        Record a payment and extend the membership.

        The new end date is payment_date + tenor, not old end + tenor.
        The transaction insert and the member update are separate writes:
        if the update fails the transaction stays recorded, the orphan is
        logged, and the update error is re-raised.
        """
        if amount <= 0:
            raise ValueError("Payment amount must be positive")
        new_end = renewal_end_date(payment_date, member.membership_type)
        if new_end < member.start_date:
            raise ValueError(
                f"Payment on {payment_date} would end the membership before its start {member.start_date}"
            )

        transaction = await self.store.add_payment_transaction(NewPayment(
            member_id=member.id,
            amount=amount,
            payment_date=payment_date,
            payment_mode=PaymentMode(mode),
            description=description or f"{member.membership_type.value} membership payment",
        ))

        updates = {
            "last_payment_date": payment_date,
            "end_date": new_end,
            "next_payment_date": new_end,
            "is_active": True,
        }
        try:
            updated = await self.store.update_member(member.id, updates)
        except Exception as e:
            logger.error("payment_orphaned",
                         transaction_id=transaction.id,
                         member_id=member.id,
                         error=str(e))
            raise
        if not updated:
            logger.warning("payment_member_missing",
                           transaction_id=transaction.id,
                           member_id=member.id)

        refreshed = await self.store.get_member(member.id)
        if refreshed is None:
            refreshed = member.model_copy(update=updates)

        logger.info("payment_recorded",
                    transaction_id=transaction.id,
                    member_id=member.id,
                    amount=amount,
                    end_date=new_end.isoformat())
        return transaction, refreshed

    # ── Reminders ──────────────────────────────────────────

    async def create_reminder(self, data: NewReminder) -> Reminder:
        """Persist a reminder, then hand it to the notification scheduler."""
        reminder = await self.store.add_reminder(data)
        try:
            await self.notifier.schedule(
                reminder.title,
                reminder.message,
                reminder.scheduled_date,
                metadata={"reminder_id": reminder.id, "member_id": reminder.member_id},
            )
        except Exception as e:
            logger.error("notification_schedule_failed",
                         reminder_id=reminder.id,
                         error=str(e))
        return reminder

    async def send_custom_reminder(
        self,
        member: Member,
        title: str = None,
        message: str = None,
        at: datetime = None,
    ) -> Reminder:
        return await self.create_reminder(NewReminder(
            member_id=member.id,
            type=ReminderType.CUSTOM,
            title=title or "Membership Reminder",
            message=message or f"Hi {member.name}, your membership ends on "
                               f"{member.end_date.isoformat()}.",
            scheduled_date=at or utcnow(),
        ))

    async def get_upcoming_reminders(
        self, days: int = 7, as_of: Optional[datetime] = None,
    ) -> list[Reminder]:
        """Unsent reminders scheduled on or before as_of + days (overdue included)."""
        as_of = as_of or utcnow()
        if as_of.tzinfo is None:
            as_of = as_of.replace(tzinfo=timezone.utc)
        horizon = as_of + timedelta(days=days)
        return [
            r for r in await self.store.get_all_reminders()
            if not r.is_sent and r.scheduled_date <= horizon
        ]

    async def dispatch_due_reminders(self, as_of: Optional[datetime] = None) -> list[Reminder]:
        """Notify and mark sent every unsent reminder due within one day."""
        dispatched: list[Reminder] = []
        for reminder in await self.get_upcoming_reminders(days=1, as_of=as_of):
            try:
                await self.notifier.schedule(
                    reminder.title,
                    reminder.message,
                    reminder.scheduled_date,
                    metadata={"reminder_id": reminder.id, "member_id": reminder.member_id},
                )
            except Exception as e:
                logger.error("reminder_dispatch_failed", reminder_id=reminder.id, error=str(e))
                continue
            await self.store.mark_reminder_sent(reminder.id)
            dispatched.append(reminder.model_copy(update={"is_sent": True}))

        logger.info("reminders_dispatched", count=len(dispatched))
        return dispatched
