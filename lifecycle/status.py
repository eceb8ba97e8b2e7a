"""
Membership status arithmetic.

Pure functions over Member values. Every comparison is at calendar-day
granularity: datetimes are truncated to dates first so a membership
ending "today" does not flip to expired at some hour of the day.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Union

from models.schemas import Member, MemberPartitions, MemberStatus, MembershipType, TENOR_DAYS

DEFAULT_EXPIRING_WINDOW_DAYS = 7


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def tenor_days(membership_type: Union[MembershipType, str]) -> int:
    return TENOR_DAYS[MembershipType(membership_type).value]


def renewal_end_date(payment_date: Union[date, datetime],
                     membership_type: Union[MembershipType, str]) -> date:
    """New expiry after a payment: payment date plus the plan's fixed day count."""
    return _as_date(payment_date) + timedelta(days=tenor_days(membership_type))


def classify(
    members: Iterable[Member],
    as_of: Union[date, datetime],
    window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
) -> MemberPartitions:
    """
    Partition members as of a reference day.

    renewing: active, ending within [as_of, as_of + window] inclusive
    expired:  ending strictly before as_of
    active:   active, ending after the renewing window
    all:      everything, unfiltered
    """
    today = _as_date(as_of)
    horizon = today + timedelta(days=window_days)
    result = MemberPartitions()
    for member in members:
        result.all.append(member)
        end = _as_date(member.end_date)
        if end < today:
            result.expired.append(member)
        elif member.is_active and end <= horizon:
            result.renewing.append(member)
        elif member.is_active:
            result.active.append(member)
    return result


def member_status(
    member: Member,
    as_of: Union[date, datetime],
    window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
) -> MemberStatus:
    """Single badge for a member: inactive wins, then expired, expiring, active."""
    if not member.is_active:
        return MemberStatus.INACTIVE
    days_left = (_as_date(member.end_date) - _as_date(as_of)).days
    if days_left < 0:
        return MemberStatus.EXPIRED
    if days_left <= window_days:
        return MemberStatus.EXPIRING
    return MemberStatus.ACTIVE
