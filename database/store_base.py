"""
Abstract Membership Store — Interface for all storage backends.

Implementations:
  - SqlMembershipStore      (SQLite / PostgreSQL / MySQL via SQLAlchemy)
  - InMemoryMembershipStore (dict-based, single-process, no persistence)
  - BackendSelector         (facade that routes to one of the above)

Both concrete stores apply the same update rules and the same cascade
on member deletion so callers cannot tell them apart.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

from pydantic import TypeAdapter

from models.schemas import (
    BackupSettings, BackupSnapshot, Member, NewMember, NewPayment,
    NewReminder, PaymentTransaction, Reminder,
    IMMUTABLE_MEMBER_FIELDS, MEMBER_FIELDS,
)


def updatable_member_fields(updates: dict[str, Any]) -> dict[str, Any]:
    """
    Filter an update-member payload down to the fields that may change.

    Accepts snake_case or camelCase keys. Drops id/created_at and any
    caller-supplied updated_at (the store stamps it). Unknown fields
    raise ValueError. Returns {} when nothing updatable remains.
    """
    by_alias = {field.alias: name for name, field in Member.model_fields.items() if field.alias}
    fields: dict[str, Any] = {}
    for key, value in updates.items():
        name = by_alias.get(key, key)
        if name not in MEMBER_FIELDS:
            raise ValueError(f"Unknown member field: {key}")
        if name in IMMUTABLE_MEMBER_FIELDS or name == "updated_at":
            continue
        fields[name] = value
    if not fields:
        return {}

    # Coerce through the model's field types so both backends store the same values
    coerced = {
        name: TypeAdapter(Member.model_fields[name].annotation).validate_python(value)
        for name, value in fields.items()
    }
    start, end = coerced.get("start_date"), coerced.get("end_date")
    if start is not None and end is not None:
        check_date_order(start, end)
    return coerced


def check_date_order(start_date: date, end_date: date) -> None:
    """Raise ValueError unless end_date >= start_date."""
    if end_date < start_date:
        raise ValueError(
            f"end_date {end_date.isoformat()} must not be before start_date {start_date.isoformat()}"
        )


class BaseMembershipStore(ABC):
    """Interface that all membership store backends must implement."""

    # ── Users ─────────────────────────────────────────────────

    @abstractmethod
    async def authenticate_user(self, mobile_number: str, pin: str) -> bool:
        ...

    @abstractmethod
    async def add_user(self, mobile_number: str, pin: str) -> bool:
        ...

    # ── Members ───────────────────────────────────────────────

    @abstractmethod
    async def add_member(self, member: NewMember) -> Member:
        ...

    @abstractmethod
    async def get_member(self, member_id: str) -> Optional[Member]:
        ...

    @abstractmethod
    async def get_all_members(self) -> list[Member]:
        ...

    @abstractmethod
    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        ...

    @abstractmethod
    async def delete_member(self, member_id: str) -> bool:
        ...

    # ── Reminders ─────────────────────────────────────────────

    @abstractmethod
    async def add_reminder(self, reminder: NewReminder) -> Reminder:
        ...

    @abstractmethod
    async def get_all_reminders(self) -> list[Reminder]:
        ...

    @abstractmethod
    async def get_member_reminders(self, member_id: str) -> list[Reminder]:
        ...

    @abstractmethod
    async def mark_reminder_sent(self, reminder_id: str) -> bool:
        ...

    # ── Payment transactions ──────────────────────────────────

    @abstractmethod
    async def add_payment_transaction(self, payment: NewPayment) -> PaymentTransaction:
        ...

    @abstractmethod
    async def get_payment_transactions(self, member_id: Optional[str] = None) -> list[PaymentTransaction]:
        ...

    # ── Backup settings ───────────────────────────────────────

    @abstractmethod
    async def get_backup_settings(self) -> BackupSettings:
        ...

    @abstractmethod
    async def update_backup_settings(self, settings: BackupSettings) -> None:
        ...

    # ── Bulk operations ───────────────────────────────────────

    @abstractmethod
    async def clear_all_data(self) -> None:
        """Delete payments, reminders and members atomically."""
        ...

    @abstractmethod
    async def replace_all(self, snapshot: BackupSnapshot) -> None:
        """Swap the whole data set for a snapshot's contents atomically."""
        ...

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        ...
