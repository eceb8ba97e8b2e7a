"""
Database layer — Platform-adaptive membership persistence.

Backends:
  - SQL (SQLite / PostgreSQL / MySQL via SQLAlchemy async)
  - In-memory (dict-based, for runtimes without an embedded engine)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "auto"})
  await store.initialize()
  member = await store.add_member(new_member)
"""
from database.models import (
    Base, UserRow, MemberRow, ReminderRow, PaymentTransactionRow, BackupSettingsRow,
)
from database.errors import (
    StoreError, InitError, InitTimeout, BackendUnavailable,
    StatementFailure, TransactionAborted, RestoreParseError,
)
from database.session import DatabaseHandle
from database.bridge import CapabilityBridge, NullBridge, DirectoryBridge
from database.store_base import BaseMembershipStore
from database.store import SqlMembershipStore
from database.store_memory import InMemoryMembershipStore
from database.selector import BackendSelector, InitState, durable_backend_available
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "UserRow", "MemberRow", "ReminderRow",
    "PaymentTransactionRow", "BackupSettingsRow",
    # Errors
    "StoreError", "InitError", "InitTimeout", "BackendUnavailable",
    "StatementFailure", "TransactionAborted", "RestoreParseError",
    # Connection
    "DatabaseHandle",
    # Capability bridges
    "CapabilityBridge", "NullBridge", "DirectoryBridge",
    # Store interface
    "BaseMembershipStore",
    # Store backends
    "SqlMembershipStore", "InMemoryMembershipStore",
    # Facade
    "BackendSelector", "InitState", "durable_backend_available",
    # Factory
    "create_store", "get_store", "reset_store",
]
