"""
Core data models for the gym membership engine.
These are the universal types shared across all modules.

Attributes are snake_case; every model serializes with the camelCase
names used by the backup snapshot (membershipType, startDate, ...) and
accepts either spelling on input.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


GENERAL_REMINDER_MEMBER_ID = "general"

# Additive renewal rule: a payment extends the membership by a fixed day count
TENOR_DAYS = {"monthly": 30, "quarterly": 90, "yearly": 365}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:16]


def _ensure_utc(value: datetime) -> datetime:
    # naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_ensure_utc)]


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class MembershipType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def tenor_days(self) -> int:
        return TENOR_DAYS[self.value]


class ReminderType(str, Enum):
    PAYMENT = "payment"
    RENEWAL = "renewal"
    CUSTOM = "custom"


class PaymentMode(str, Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    UPI = "upi"


class BackupFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    EXPIRING = "expiring"
    EXPIRED = "expired"
    INACTIVE = "inactive"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ──────────────────────────────────────────────────────────────
#  Members
# ──────────────────────────────────────────────────────────────

class NewMember(_CamelModel):
    """Input for add-member. The store assigns id and timestamps."""
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    membership_type: MembershipType
    start_date: date
    end_date: Optional[date] = None           # defaults to start_date + tenor
    is_active: bool = True
    last_payment_date: Optional[date] = None
    next_payment_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _resolve_end_date(self) -> "NewMember":
        if self.end_date is None:
            self.end_date = self.start_date + timedelta(days=self.membership_type.tenor_days)
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class Member(_CamelModel):
    """A gym member as stored."""
    id: str = Field(default_factory=new_id)
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    avatar_url: Optional[str] = None
    membership_type: MembershipType
    start_date: date
    end_date: date
    is_active: bool = True
    last_payment_date: Optional[date] = None
    next_payment_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_dates(self) -> "Member":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


# Fields callers may never change through update-member
IMMUTABLE_MEMBER_FIELDS = frozenset({"id", "created_at"})
MEMBER_FIELDS = frozenset(Member.model_fields)


# ──────────────────────────────────────────────────────────────
#  Reminders
# ──────────────────────────────────────────────────────────────

class NewReminder(_CamelModel):
    member_id: str = GENERAL_REMINDER_MEMBER_ID
    type: ReminderType
    title: str
    message: str
    scheduled_date: UtcDatetime
    is_sent: bool = False


class Reminder(_CamelModel):
    id: str = Field(default_factory=new_id)
    member_id: str = GENERAL_REMINDER_MEMBER_ID
    type: ReminderType
    title: str
    message: str
    scheduled_date: UtcDatetime
    is_sent: bool = False
    created_at: UtcDatetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────────────────────
#  Payment transactions
# ──────────────────────────────────────────────────────────────

class NewPayment(_CamelModel):
    member_id: str
    amount: float
    payment_date: date
    payment_mode: PaymentMode
    description: Optional[str] = None


class PaymentTransaction(_CamelModel):
    id: str = Field(default_factory=new_id)
    member_id: str
    amount: float
    payment_date: date
    payment_mode: PaymentMode
    description: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────────────────────
#  Backup settings & credentials
# ──────────────────────────────────────────────────────────────

class BackupSettings(_CamelModel):
    """Singleton row; the default instance stands in for an empty table."""
    frequency: BackupFrequency = BackupFrequency.WEEKLY
    is_enabled: bool = False
    last_backup: Optional[UtcDatetime] = None
    next_backup: Optional[UtcDatetime] = None


class UserCredential(_CamelModel):
    mobile_number: str
    pin: str
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)


# ──────────────────────────────────────────────────────────────
#  Derived views
# ──────────────────────────────────────────────────────────────

class MemberPartitions(BaseModel):
    """Result of classifying members as of a reference date."""
    renewing: list[Member] = []
    expired: list[Member] = []
    active: list[Member] = []
    all: list[Member] = []


class BackupSnapshot(_CamelModel):
    """Portable snapshot document for export/import."""
    timestamp: UtcDatetime
    members: list[Member] = []
    reminders: list[Reminder] = []
    payments: list[PaymentTransaction] = []
    backup_settings: BackupSettings = Field(default_factory=BackupSettings)


class RestoreReport(BaseModel):
    timestamp: UtcDatetime
    members: int = 0
    reminders: int = 0
    payments: int = 0
    applied: bool = False
