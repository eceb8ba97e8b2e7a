"""
SQLAlchemy ORM models — table layouts and default rows.

Key design decisions:
  - String primary keys (uuid hex) for members, reminders and payments;
    they are assigned by the store, never by the database.
  - Reminders carry no foreign key: member-less reminders use the
    "general" sentinel as member_id.
  - Cascade on member deletion is done explicitly by the stores, not by
    ON DELETE rules (SQLite does not enforce foreign keys by default).
  - Every CREATE is create-if-absent so schema creation can be re-run.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Integer, Float, Date, DateTime, Text, Boolean, ForeignKey, Index,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from models.schemas import new_id as _new_id


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all ORM models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Users (credentials)
# ──────────────────────────────────────────────────────────────

class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mobile_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    pin: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


# ──────────────────────────────────────────────────────────────
#  Members
# ──────────────────────────────────────────────────────────────

class MemberRow(Base):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    membership_type: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_members_end_date", "end_date"),
    )


# ──────────────────────────────────────────────────────────────
#  Reminders
# ──────────────────────────────────────────────────────────────

class ReminderRow(Base):
    __tablename__ = "reminders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    member_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_reminders_member", "member_id"),
        Index("ix_reminders_scheduled", "scheduled_date"),
    )


# ──────────────────────────────────────────────────────────────
#  Payment transactions
# ──────────────────────────────────────────────────────────────

class PaymentTransactionRow(Base):
    __tablename__ = "payment_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    member_id: Mapped[str] = mapped_column(String(64), ForeignKey("members.id"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_payments_member", "member_id"),
    )


# ──────────────────────────────────────────────────────────────
#  Backup settings (singleton)
# ──────────────────────────────────────────────────────────────

class BackupSettingsRow(Base):
    __tablename__ = "backup_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="weekly")
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_backup: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    next_backup: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# ──────────────────────────────────────────────────────────────
#  Default rows
# ──────────────────────────────────────────────────────────────

DEFAULT_BACKUP_SETTINGS = {"frequency": "weekly", "is_enabled": False}

# Order matters for clearing: dependents before owners
CLEAR_ORDER = (PaymentTransactionRow, ReminderRow, MemberRow)
