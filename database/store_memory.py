"""
InMemoryMembershipStore — Dict-backed store for runtimes without a
durable engine, and for tests.

Features:
  - Zero dependencies (no database, no driver)
  - Same contract as SqlMembershipStore: same update field rules,
    same cascade on delete, same sort orders
  - Safe under asyncio (single event loop, no awaits mid-mutation)
  - All data lost on process restart
"""
from __future__ import annotations

import copy
import structlog
from typing import Any, Optional

from database.errors import TransactionAborted
from database.store_base import BaseMembershipStore, check_date_order, updatable_member_fields
from models.schemas import (
    BackupSettings, BackupSnapshot, Member, NewMember, NewPayment,
    NewReminder, PaymentTransaction, Reminder, UserCredential, new_id, utcnow,
)

logger = structlog.get_logger()

# Dependents before owners
_CLEAR_ORDER = ("payments", "reminders", "members")


class InMemoryMembershipStore(BaseMembershipStore):
    """
    Full-featured in-memory store with the same interface as SqlMembershipStore.
    Entities are kept as pydantic models keyed by id and copied on the way out.
    """

    def __init__(self, default_user: Optional[tuple[str, str]] = None):
        self._members: dict[str, Member] = {}
        self._reminders: dict[str, Reminder] = {}
        self._payments: dict[str, PaymentTransaction] = {}
        self._backup_settings: Optional[BackupSettings] = None
        self._users: dict[str, UserCredential] = {}     # mobile_number → credential
        if default_user:
            mobile_number, pin = default_user
            self._users[mobile_number] = UserCredential(mobile_number=mobile_number, pin=pin)
        logger.info("inmemory_store_initialized")

    # ── Users ─────────────────────────────────────────────

    async def authenticate_user(self, mobile_number: str, pin: str) -> bool:
        user = self._users.get(mobile_number)
        return user is not None and user.pin == pin

    async def add_user(self, mobile_number: str, pin: str) -> bool:
        if mobile_number in self._users:
            logger.warning("user_already_exists", mobile_number=mobile_number)
            return False
        self._users[mobile_number] = UserCredential(mobile_number=mobile_number, pin=pin)
        return True

    # ── Members ───────────────────────────────────────────

    async def add_member(self, member: NewMember) -> Member:
        now = utcnow()
        stored = Member(id=new_id(), created_at=now, updated_at=now, **member.model_dump())
        self._members[stored.id] = stored
        return stored.model_copy()

    async def get_member(self, member_id: str) -> Optional[Member]:
        member = self._members.get(member_id)
        return member.model_copy() if member else None

    async def get_all_members(self) -> list[Member]:
        members = sorted(self._members.values(), key=lambda m: m.created_at, reverse=True)
        return [m.model_copy() for m in members]

    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        fields = updatable_member_fields(updates)
        if not fields:
            return False
        member = self._members.get(member_id)
        if member is None:
            return False
        check_date_order(
            fields.get("start_date", member.start_date),
            fields.get("end_date", member.end_date),
        )
        self._members[member_id] = member.model_copy(update={**fields, "updated_at": utcnow()})
        return True

    async def delete_member(self, member_id: str) -> bool:
        self._payments = {k: p for k, p in self._payments.items() if p.member_id != member_id}
        self._reminders = {k: r for k, r in self._reminders.items() if r.member_id != member_id}
        return self._members.pop(member_id, None) is not None

    # ── Reminders ─────────────────────────────────────────

    async def add_reminder(self, reminder: NewReminder) -> Reminder:
        stored = Reminder(id=new_id(), created_at=utcnow(), **reminder.model_dump())
        self._reminders[stored.id] = stored
        return stored.model_copy()

    async def get_all_reminders(self) -> list[Reminder]:
        reminders = sorted(self._reminders.values(), key=lambda r: r.scheduled_date)
        return [r.model_copy() for r in reminders]

    async def get_member_reminders(self, member_id: str) -> list[Reminder]:
        return [r for r in await self.get_all_reminders() if r.member_id == member_id]

    async def mark_reminder_sent(self, reminder_id: str) -> bool:
        reminder = self._reminders.get(reminder_id)
        if reminder is None:
            return False
        self._reminders[reminder_id] = reminder.model_copy(update={"is_sent": True})
        return True

    # ── Payment transactions ──────────────────────────────

    async def add_payment_transaction(self, payment: NewPayment) -> PaymentTransaction:
        stored = PaymentTransaction(id=new_id(), created_at=utcnow(), **payment.model_dump())
        self._payments[stored.id] = stored
        return stored.model_copy()

    async def get_payment_transactions(self, member_id: Optional[str] = None) -> list[PaymentTransaction]:
        payments = [
            p for p in self._payments.values()
            if not member_id or p.member_id == member_id
        ]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return [p.model_copy() for p in payments]

    # ── Backup settings ───────────────────────────────────

    async def get_backup_settings(self) -> BackupSettings:
        if self._backup_settings is None:
            return BackupSettings()
        return self._backup_settings.model_copy()

    async def update_backup_settings(self, settings: BackupSettings) -> None:
        self._backup_settings = settings.model_copy()

    # ── Bulk operations ───────────────────────────────────

    def _clear_collection(self, name: str) -> None:
        getattr(self, f"_{name}").clear()

    def _snapshot(self) -> dict[str, Any]:
        return {
            "members": copy.copy(self._members),
            "reminders": copy.copy(self._reminders),
            "payments": copy.copy(self._payments),
            "backup_settings": self._backup_settings,
        }

    def _restore(self, saved: dict[str, Any]) -> None:
        self._members = saved["members"]
        self._reminders = saved["reminders"]
        self._payments = saved["payments"]
        self._backup_settings = saved["backup_settings"]

    async def clear_all_data(self) -> None:
        saved = self._snapshot()
        try:
            for name in _CLEAR_ORDER:
                self._clear_collection(name)
        except Exception as e:
            self._restore(saved)
            logger.error("clear_all_data_rolled_back", error=str(e))
            raise TransactionAborted(f"Clearing data failed: {e}", "clear_all_data") from e
        logger.info("all_data_cleared")

    async def replace_all(self, snapshot: BackupSnapshot) -> None:
        saved = self._snapshot()
        try:
            for name in _CLEAR_ORDER:
                self._clear_collection(name)
            self._members.update({m.id: m.model_copy() for m in snapshot.members})
            self._reminders.update({r.id: r.model_copy() for r in snapshot.reminders})
            self._payments.update({p.id: p.model_copy() for p in snapshot.payments})
            self._backup_settings = snapshot.backup_settings.model_copy()
        except Exception as e:
            self._restore(saved)
            logger.error("replace_all_rolled_back", error=str(e))
            raise TransactionAborted(f"Restoring data failed: {e}", "replace_all") from e
        logger.info("all_data_replaced",
                    members=len(snapshot.members),
                    reminders=len(snapshot.reminders),
                    payments=len(snapshot.payments))

    async def stats(self) -> dict[str, int]:
        return {
            "members": len(self._members),
            "reminders": len(self._reminders),
            "payments": len(self._payments),
            "users": len(self._users),
        }
