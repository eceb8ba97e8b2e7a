"""
Backup/Restore codec — portable JSON snapshots of the membership data.

Document shape (camelCase keys, pretty-printed with indent 2):

    {
      "timestamp": "2024-01-01T00:00:00Z",
      "members":   [ {...Member}, ... ],
      "reminders": [ {...Reminder}, ... ],
      "payments":  [ {...PaymentTransaction}, ... ],
      "backupSettings": {...BackupSettings}
    }

Restore validates the whole document before anything is written. By
default it only reports what the snapshot contains; replace=True swaps
the stored data set for the snapshot in one transaction.
"""
from __future__ import annotations

import calendar
import json
import structlog
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from database.errors import RestoreParseError
from database.store_base import BaseMembershipStore
from models.schemas import BackupFrequency, BackupSettings, BackupSnapshot, RestoreReport, utcnow

logger = structlog.get_logger()


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_backup_time(last_backup: datetime, frequency: BackupFrequency) -> datetime:
    frequency = BackupFrequency(frequency)
    if frequency is BackupFrequency.DAILY:
        return last_backup + timedelta(days=1)
    if frequency is BackupFrequency.WEEKLY:
        return last_backup + timedelta(days=7)
    if frequency is BackupFrequency.MONTHLY:
        return _add_months(last_backup, 1)
    return _add_months(last_backup, 12)


async def create_backup(store: BaseMembershipStore, now: Optional[datetime] = None) -> str:
    """Read every collection through the store and serialize one snapshot."""
    snapshot = BackupSnapshot(
        timestamp=now or utcnow(),
        members=await store.get_all_members(),
        reminders=await store.get_all_reminders(),
        payments=await store.get_payment_transactions(),
        backup_settings=await store.get_backup_settings(),
    )
    logger.info("backup_created",
                members=len(snapshot.members),
                reminders=len(snapshot.reminders),
                payments=len(snapshot.payments))
    return json.dumps(snapshot.to_dict(), indent=2)


def parse_backup(doc: str) -> BackupSnapshot:
    try:
        raw = json.loads(doc)
    except (TypeError, ValueError) as e:
        raise RestoreParseError(f"Backup is not valid JSON: {e}", "restore_backup") from e
    if not isinstance(raw, dict):
        raise RestoreParseError("Backup must be a JSON object", "restore_backup")
    try:
        return BackupSnapshot.model_validate(raw)
    except ValidationError as e:
        raise RestoreParseError(
            f"Backup has {e.error_count()} invalid field(s): {e.errors()[0]['loc']}",
            "restore_backup",
        ) from e


async def restore_backup(
    store: BaseMembershipStore, doc: str, replace: bool = False,
) -> RestoreReport:
    """
    Validate a backup document and optionally apply it.

    Raises RestoreParseError (nothing applied) for a malformed document
    and TransactionAborted if replace=True fails part-way.
    """
    snapshot = parse_backup(doc)
    report = RestoreReport(
        timestamp=snapshot.timestamp,
        members=len(snapshot.members),
        reminders=len(snapshot.reminders),
        payments=len(snapshot.payments),
    )
    if not replace:
        logger.info("backup_validated", **report.model_dump(mode="json"))
        return report

    await store.replace_all(snapshot)
    report.applied = True
    logger.info("backup_restored", **report.model_dump(mode="json"))
    return report


async def mark_backup_completed(
    store: BaseMembershipStore, at: Optional[datetime] = None,
) -> BackupSettings:
    """Stamp last_backup and schedule next_backup when backups are enabled."""
    current = await store.get_backup_settings()
    at = at or utcnow()
    updated = current.model_copy(update={
        "last_backup": at,
        "next_backup": next_backup_time(at, current.frequency) if current.is_enabled else None,
    })
    await store.update_backup_settings(updated)
    return updated
