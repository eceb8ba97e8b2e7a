"""
SqlMembershipStore — Durable store over SQLAlchemy async sessions.

Each operation runs in one session scope (commit on success, rollback
on error). Cascades and the clear-all transaction are explicit so they
behave the same on engines that do not enforce foreign keys.
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.errors import TransactionAborted
from database.models import (
    BackupSettingsRow, MemberRow, PaymentTransactionRow, ReminderRow, UserRow,
    CLEAR_ORDER, DEFAULT_BACKUP_SETTINGS,
)
from database.session import DatabaseHandle
from database.store_base import BaseMembershipStore, check_date_order, updatable_member_fields
from models.schemas import (
    BackupSettings, BackupSnapshot, Member, NewMember, NewPayment,
    NewReminder, PaymentTransaction, Reminder, new_id, utcnow,
)

logger = structlog.get_logger()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _as_utc(value)
    return value


class SqlMembershipStore(BaseMembershipStore):
    """
    Persistent membership store backed by any SQLAlchemy-supported database.
    Works with SQLite, PostgreSQL and MySQL 8+.
    """

    def __init__(self, handle: DatabaseHandle):
        self._handle = handle

    # ── Seeding ────────────────────────────────────────────

    async def seed_defaults(self, mobile_number: str, pin: str) -> dict[str, bool]:
        """
        Insert the backup-settings singleton and the default credential,
        each only when its table is empty.
        """
        seeded = {"backup_settings": False, "users": False}
        async with self._handle.session() as db:
            count = await db.scalar(select(func.count()).select_from(BackupSettingsRow))
            if count == 0:
                db.add(BackupSettingsRow(**DEFAULT_BACKUP_SETTINGS))
                seeded["backup_settings"] = True

            count = await db.scalar(select(func.count()).select_from(UserRow))
            if count == 0:
                now = utcnow()
                db.add(UserRow(mobile_number=mobile_number, pin=pin, created_at=now, updated_at=now))
                seeded["users"] = True
        logger.info("database_defaults_seeded", **seeded)
        return seeded

    # ── Users ──────────────────────────────────────────────

    async def authenticate_user(self, mobile_number: str, pin: str) -> bool:
        async with self._handle.session() as db:
            stmt = select(UserRow.id).where(
                UserRow.mobile_number == mobile_number,
                UserRow.pin == pin,
            )
            result = await db.execute(stmt)
            return result.first() is not None

    async def add_user(self, mobile_number: str, pin: str) -> bool:
        now = utcnow()
        try:
            async with self._handle.session() as db:
                db.add(UserRow(mobile_number=mobile_number, pin=pin, created_at=now, updated_at=now))
        except IntegrityError:
            logger.warning("user_already_exists", mobile_number=mobile_number)
            return False
        return True

    # ── Members ────────────────────────────────────────────

    async def add_member(self, member: NewMember) -> Member:
        now = utcnow()
        values = {k: _column_value(v) for k, v in member.model_dump().items()}
        row = MemberRow(id=new_id(), created_at=now, updated_at=now, **values)
        async with self._handle.session() as db:
            db.add(row)
            await db.flush()
            return self._row_to_member(row)

    async def get_member(self, member_id: str) -> Optional[Member]:
        async with self._handle.session() as db:
            row = await db.get(MemberRow, member_id)
            return self._row_to_member(row) if row else None

    async def get_all_members(self) -> list[Member]:
        async with self._handle.session() as db:
            stmt = select(MemberRow).order_by(MemberRow.created_at.desc())
            result = await db.execute(stmt)
            return [self._row_to_member(r) for r in result.scalars().all()]

    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        fields = updatable_member_fields(updates)
        if not fields:
            return False
        values = {k: _column_value(v) for k, v in fields.items()}
        async with self._handle.session() as db:
            if "start_date" in fields or "end_date" in fields:
                stmt = select(MemberRow.start_date, MemberRow.end_date).where(MemberRow.id == member_id)
                current = (await db.execute(stmt)).first()
                if current is None:
                    return False
                # one-sided date changes are checked against the stored row
                check_date_order(
                    fields.get("start_date", current.start_date),
                    fields.get("end_date", current.end_date),
                )
            stmt = (
                update(MemberRow)
                .where(MemberRow.id == member_id)
                .values(**values, updated_at=utcnow())
            )
            result = await db.execute(stmt)
            return result.rowcount > 0

    async def delete_member(self, member_id: str) -> bool:
        async with self._handle.session() as db:
            await db.execute(delete(PaymentTransactionRow).where(PaymentTransactionRow.member_id == member_id))
            await db.execute(delete(ReminderRow).where(ReminderRow.member_id == member_id))
            result = await db.execute(delete(MemberRow).where(MemberRow.id == member_id))
            return result.rowcount > 0

    # ── Reminders ──────────────────────────────────────────

    async def add_reminder(self, reminder: NewReminder) -> Reminder:
        values = {k: _column_value(v) for k, v in reminder.model_dump().items()}
        row = ReminderRow(id=new_id(), created_at=utcnow(), **values)
        async with self._handle.session() as db:
            db.add(row)
            await db.flush()
            return self._row_to_reminder(row)

    async def get_all_reminders(self) -> list[Reminder]:
        async with self._handle.session() as db:
            stmt = select(ReminderRow).order_by(ReminderRow.scheduled_date.asc())
            result = await db.execute(stmt)
            return [self._row_to_reminder(r) for r in result.scalars().all()]

    async def get_member_reminders(self, member_id: str) -> list[Reminder]:
        async with self._handle.session() as db:
            stmt = (
                select(ReminderRow)
                .where(ReminderRow.member_id == member_id)
                .order_by(ReminderRow.scheduled_date.asc())
            )
            result = await db.execute(stmt)
            return [self._row_to_reminder(r) for r in result.scalars().all()]

    async def mark_reminder_sent(self, reminder_id: str) -> bool:
        async with self._handle.session() as db:
            stmt = update(ReminderRow).where(ReminderRow.id == reminder_id).values(is_sent=True)
            result = await db.execute(stmt)
            return result.rowcount > 0

    # ── Payment transactions ───────────────────────────────

    async def add_payment_transaction(self, payment: NewPayment) -> PaymentTransaction:
        values = {k: _column_value(v) for k, v in payment.model_dump().items()}
        row = PaymentTransactionRow(id=new_id(), created_at=utcnow(), **values)
        async with self._handle.session() as db:
            db.add(row)
            await db.flush()
            return self._row_to_payment(row)

    async def get_payment_transactions(self, member_id: Optional[str] = None) -> list[PaymentTransaction]:
        async with self._handle.session() as db:
            stmt = select(PaymentTransactionRow)
            if member_id:
                stmt = stmt.where(PaymentTransactionRow.member_id == member_id)
            stmt = stmt.order_by(
                PaymentTransactionRow.payment_date.desc(),
                PaymentTransactionRow.created_at.desc(),
            )
            result = await db.execute(stmt)
            return [self._row_to_payment(r) for r in result.scalars().all()]

    # ── Backup settings ────────────────────────────────────

    async def get_backup_settings(self) -> BackupSettings:
        async with self._handle.session() as db:
            stmt = select(BackupSettingsRow).order_by(BackupSettingsRow.id).limit(1)
            row = (await db.execute(stmt)).scalar_one_or_none()
            if row is None:
                return BackupSettings()
            return BackupSettings(
                frequency=row.frequency,
                is_enabled=row.is_enabled,
                last_backup=_as_utc(row.last_backup),
                next_backup=_as_utc(row.next_backup),
            )

    async def update_backup_settings(self, settings: BackupSettings) -> None:
        values = {k: _column_value(v) for k, v in settings.model_dump().items()}
        async with self._handle.session() as db:
            await self._write_backup_settings(db, values)

    @staticmethod
    async def _write_backup_settings(db: AsyncSession, values: dict[str, Any]) -> None:
        stmt = select(BackupSettingsRow).order_by(BackupSettingsRow.id).limit(1)
        row = (await db.execute(stmt)).scalar_one_or_none()
        if row is None:
            db.add(BackupSettingsRow(**values))
        else:
            for k, v in values.items():
                setattr(row, k, v)

    # ── Bulk operations ────────────────────────────────────

    async def _delete_all(self, db: AsyncSession, table: type) -> None:
        await db.execute(delete(table))

    async def clear_all_data(self) -> None:
        try:
            async with self._handle.session() as db:
                for table in CLEAR_ORDER:
                    await self._delete_all(db, table)
        except Exception as e:
            # session scope has already rolled back
            logger.error("clear_all_data_rolled_back", error=str(e))
            raise TransactionAborted(f"Clearing data failed: {e}", "clear_all_data") from e
        logger.info("all_data_cleared")

    async def replace_all(self, snapshot: BackupSnapshot) -> None:
        try:
            async with self._handle.session() as db:
                for table in CLEAR_ORDER:
                    await self._delete_all(db, table)
                db.add_all(
                    MemberRow(**{k: _column_value(v) for k, v in m.model_dump().items()})
                    for m in snapshot.members
                )
                db.add_all(
                    ReminderRow(**{k: _column_value(v) for k, v in r.model_dump().items()})
                    for r in snapshot.reminders
                )
                db.add_all(
                    PaymentTransactionRow(**{k: _column_value(v) for k, v in p.model_dump().items()})
                    for p in snapshot.payments
                )
                await self._write_backup_settings(
                    db, {k: _column_value(v) for k, v in snapshot.backup_settings.model_dump().items()},
                )
        except Exception as e:
            logger.error("replace_all_rolled_back", error=str(e))
            raise TransactionAborted(f"Restoring data failed: {e}", "replace_all") from e
        logger.info("all_data_replaced",
                    members=len(snapshot.members),
                    reminders=len(snapshot.reminders),
                    payments=len(snapshot.payments))

    async def stats(self) -> dict[str, int]:
        async with self._handle.session() as db:
            return {
                "members": await db.scalar(select(func.count()).select_from(MemberRow)),
                "reminders": await db.scalar(select(func.count()).select_from(ReminderRow)),
                "payments": await db.scalar(select(func.count()).select_from(PaymentTransactionRow)),
                "users": await db.scalar(select(func.count()).select_from(UserRow)),
            }

    # ── Converters ─────────────────────────────────────────

    @staticmethod
    def _row_to_member(row: MemberRow) -> Member:
        return Member(
            id=row.id, name=row.name, phone=row.phone,
            email=row.email, address=row.address, avatar_url=row.avatar_url,
            membership_type=row.membership_type,
            start_date=row.start_date, end_date=row.end_date,
            is_active=bool(row.is_active),
            last_payment_date=row.last_payment_date,
            next_payment_date=row.next_payment_date,
            notes=row.notes,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    @staticmethod
    def _row_to_reminder(row: ReminderRow) -> Reminder:
        return Reminder(
            id=row.id, member_id=row.member_id, type=row.type,
            title=row.title, message=row.message,
            scheduled_date=_as_utc(row.scheduled_date),
            is_sent=bool(row.is_sent),
            created_at=_as_utc(row.created_at),
        )

    @staticmethod
    def _row_to_payment(row: PaymentTransactionRow) -> PaymentTransaction:
        return PaymentTransaction(
            id=row.id, member_id=row.member_id, amount=row.amount,
            payment_date=row.payment_date, payment_mode=row.payment_mode,
            description=row.description,
            created_at=_as_utc(row.created_at),
        )
