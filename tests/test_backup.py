"""
Tests for backup snapshot export, validation and restore.
"""
import json
from datetime import date, datetime, timezone

import pytest

from backup.codec import (
    create_backup, mark_backup_completed, next_backup_time, parse_backup, restore_backup,
)
from database.errors import RestoreParseError
from database.selector import BackendSelector
from lifecycle.engine import MembershipLifecycle
from models.schemas import BackupFrequency, BackupSettings, PaymentMode
from notifications.scheduler import NullNotificationScheduler

NOW = datetime(2024, 2, 1, 6, 0, tzinfo=timezone.utc)


async def _populated(store, new_member):
    lifecycle = MembershipLifecycle(store, notifier=NullNotificationScheduler())
    member = await lifecycle.add_member(new_member)
    await lifecycle.record_payment(member, 1500, date(2024, 1, 5), PaymentMode.CASH)
    return member


class TestCreateBackup:
    @pytest.mark.asyncio
    async def test_document_shape(self, store, new_member):
        member = await _populated(store, new_member)
        doc = await create_backup(store, now=NOW)
        raw = json.loads(doc)

        assert set(raw) == {"timestamp", "members", "reminders", "payments", "backupSettings"}
        assert raw["timestamp"] == "2024-02-01T06:00:00Z"
        assert raw["members"][0]["id"] == member.id
        assert raw["members"][0]["membershipType"] == "monthly"
        assert raw["members"][0]["endDate"] == "2024-02-04"
        assert len(raw["reminders"]) == 2
        assert raw["payments"][0]["paymentMode"] == "cash"
        assert raw["backupSettings"] == {
            "frequency": "weekly", "isEnabled": False, "lastBackup": None, "nextBackup": None,
        }
        # pretty-printed
        assert doc.startswith("{\n  ")

    @pytest.mark.asyncio
    async def test_empty_store(self, memory_store):
        raw = json.loads(await create_backup(memory_store, now=NOW))
        assert raw["members"] == [] and raw["reminders"] == [] and raw["payments"] == []


class TestRestore:
    @pytest.mark.asyncio
    async def test_validate_only_by_default(self, store, new_member):
        await _populated(store, new_member)
        doc = await create_backup(store, now=NOW)
        await store.clear_all_data()

        report = await restore_backup(store, doc)
        assert (report.members, report.reminders, report.payments) == (1, 2, 1)
        assert report.applied is False
        assert report.timestamp == NOW
        assert await store.get_all_members() == []

    @pytest.mark.asyncio
    async def test_replace_into_other_backend(self, memory_store, sql_store, new_member):
        member = await _populated(memory_store, new_member)
        doc = await create_backup(memory_store, now=NOW)

        report = await restore_backup(sql_store, doc, replace=True)
        assert report.applied is True

        restored = await sql_store.get_member(member.id)
        assert restored is not None
        assert restored.end_date == date(2024, 2, 4)
        assert restored.created_at == member.created_at
        assert len(await sql_store.get_member_reminders(member.id)) == 2
        assert [p.amount for p in await sql_store.get_payment_transactions(member.id)] == [1500]

    @pytest.mark.asyncio
    async def test_replace_discards_existing(self, memory_config, new_member, make_member):
        source = BackendSelector(memory_config)
        target = BackendSelector(memory_config)
        await _populated(source, new_member)
        await target.add_member(make_member("Stale"))

        await restore_backup(target, await create_backup(source, now=NOW), replace=True)
        assert [m.name for m in await target.get_all_members()] == ["Asha Verma"]

    @pytest.mark.parametrize("doc", [
        "not json at all",
        "[1, 2, 3]",
        "{}",
        json.dumps({"timestamp": "yesterday"}),
        json.dumps({"timestamp": "2024-01-01T00:00:00Z", "members": [{"name": "no phone"}]}),
    ])
    @pytest.mark.asyncio
    async def test_malformed_documents(self, memory_store, new_member, doc):
        await memory_store.add_member(new_member)
        with pytest.raises(RestoreParseError) as exc:
            await restore_backup(memory_store, doc, replace=True)
        assert exc.value.operation == "restore_backup"
        assert len(await memory_store.get_all_members()) == 1

    def test_parse_accepts_snake_case(self):
        snapshot = parse_backup(json.dumps({
            "timestamp": "2024-01-01T00:00:00",
            "backup_settings": {"frequency": "daily", "is_enabled": True},
        }))
        assert snapshot.timestamp.tzinfo is not None
        assert snapshot.backup_settings.frequency == BackupFrequency.DAILY


class TestBackupSchedule:
    def test_next_backup_time(self):
        jan31 = datetime(2024, 1, 31, 8, tzinfo=timezone.utc)
        assert next_backup_time(jan31, BackupFrequency.DAILY) == datetime(2024, 2, 1, 8, tzinfo=timezone.utc)
        assert next_backup_time(jan31, BackupFrequency.WEEKLY) == datetime(2024, 2, 7, 8, tzinfo=timezone.utc)
        assert next_backup_time(jan31, BackupFrequency.MONTHLY) == datetime(2024, 2, 29, 8, tzinfo=timezone.utc)
        assert next_backup_time(jan31, "yearly") == datetime(2025, 1, 31, 8, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_mark_completed_when_enabled(self, store):
        await store.update_backup_settings(BackupSettings(frequency=BackupFrequency.WEEKLY, is_enabled=True))
        settings = await mark_backup_completed(store, NOW)
        assert settings.next_backup == datetime(2024, 2, 8, 6, tzinfo=timezone.utc)

        stored = await store.get_backup_settings()
        assert stored.last_backup == NOW
        assert stored.next_backup == datetime(2024, 2, 8, 6, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_mark_completed_when_disabled(self, store):
        settings = await mark_backup_completed(store, NOW)
        assert settings.last_backup == NOW
        assert settings.next_backup is None
