"""
BackendSelector — one facade over whichever store this runtime supports.

The durable/ephemeral decision is made once, at construction, from the
configured store_backend and whether the async driver for the database
URL can be imported. After that every call goes to the same backend.

Durable initialization is a state machine:

    UNINITIALIZED → WAITING_FOR_HOST_BRIDGE → OPENING_CONNECTION
        → CREATING_SCHEMA → SEEDING_DEFAULTS → READY

with FAILED reachable from any non-terminal state. At most one
initialization task is in flight; concurrent callers await the same
task. A failed initialization is not retried automatically, but the
next initialize() call starts again from UNINITIALIZED.

Deadlines:
  - init_timeout_s  (30s) bounds the whole sequence; exceeding it fails
    initialization with InitTimeout whatever stage it reached.
  - ready_timeout_s (20s) bounds how long a single CRUD call waits for
    readiness; the shared initialization keeps running.
  - connect_timeout_s / open_timeout_s bound the connection stages.

Usage:
    selector = BackendSelector(get_settings().database)
    await selector.initialize()          # optional, CRUD calls do it lazily
    member = await selector.add_member(new_member)
"""
from __future__ import annotations

import asyncio
import importlib.util
import structlog
from enum import Enum
from typing import Any, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying, retry_if_exception_type, retry_if_result,
    stop_after_attempt, wait_fixed,
)

from config.settings import DatabaseConfig, get_settings
from database.bridge import CapabilityBridge, bridge_for_url
from database.errors import (
    BackendUnavailable, InitError, InitTimeout, StatementFailure, StoreError,
)
from database.session import DatabaseHandle, required_driver, sqlite_file_path
from database.store import SqlMembershipStore
from database.store_base import BaseMembershipStore
from database.store_memory import InMemoryMembershipStore
from models.schemas import (
    BackupSettings, BackupSnapshot, Member, NewMember, NewPayment,
    NewReminder, PaymentTransaction, Reminder,
)

logger = structlog.get_logger()

# Open failures that may be false negatives from the engine
_TRANSIENT_OPEN_ERRORS = (asyncio.TimeoutError, OperationalError, InterfaceError)


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    WAITING_FOR_HOST_BRIDGE = "waiting_for_host_bridge"
    OPENING_CONNECTION = "opening_connection"
    CREATING_SCHEMA = "creating_schema"
    SEEDING_DEFAULTS = "seeding_defaults"
    READY = "ready"
    FAILED = "failed"


def durable_backend_available(db_url: str) -> bool:
    """Cheap capability check: can this runtime load the URL's async driver?"""
    driver = required_driver(db_url)
    if driver is None or importlib.util.find_spec(driver) is None:
        return False
    if driver == "aiosqlite" and importlib.util.find_spec("_sqlite3") is None:
        return False
    return True


class BackendSelector(BaseMembershipStore):
    """Routes every store operation to the backend chosen at construction."""

    def __init__(
        self,
        config: DatabaseConfig = None,
        bridge: CapabilityBridge = None,
        debug: bool = False,
    ):
        self.config = config or get_settings().database
        self._debug = debug

        backend = self.config.store_backend
        if backend == "memory":
            self.durable = False
        elif backend == "sql":
            if not durable_backend_available(self.config.url):
                raise BackendUnavailable(
                    f"No embedded engine support for {self.config.url.split('://')[0]}",
                    "initialize",
                )
            self.durable = True
        else:  # "auto" or default
            self.durable = durable_backend_available(self.config.url)

        self._bridge = bridge or bridge_for_url(sqlite_file_path(self.config.url))
        self._handle: Optional[DatabaseHandle] = None
        self._backend: Optional[BaseMembershipStore] = None
        self._init_task: Optional[asyncio.Task] = None

        self.state = InitState.UNINITIALIZED
        self.transitions: list[InitState] = [InitState.UNINITIALIZED]
        logger.info("store_backend_selected",
                    backend=self.backend_name,
                    requested=backend,
                    bridge=self._bridge.name)

    @property
    def backend_name(self) -> str:
        return "sql" if self.durable else "memory"

    @property
    def backend(self) -> Optional[BaseMembershipStore]:
        """The ready backend, or None before initialization completes."""
        return self._backend

    def _set_state(self, state: InitState) -> None:
        self.state = state
        self.transitions.append(state)
        logger.info("store_init_state", state=state.value, backend=self.backend_name)

    # ── Initialization ─────────────────────────────────────

    async def initialize(self) -> InitState:
        """
        Bring the selected backend to READY. Safe to call concurrently:
        callers share one in-flight task. Raises InitError subclasses.
        """
        if self.state is InitState.READY:
            return InitState.READY

        task = self._init_task
        if task is None or (task.done() and self.state is InitState.FAILED):
            if self.state is InitState.FAILED:
                self._set_state(InitState.UNINITIALIZED)
            task = asyncio.create_task(self._run_initialization(), name="store_init")
            task.add_done_callback(self._consume_init_result)
            self._init_task = task

        # Shielded so a caller that gives up does not cancel the shared task
        return await asyncio.shield(task)

    async def ensure_ready(self, operation: str = "") -> BaseMembershipStore:
        """Lazily initialize, waiting at most ready_timeout_s for this call."""
        if self.state is InitState.READY and self._backend is not None:
            return self._backend
        try:
            await asyncio.wait_for(self.initialize(), timeout=self.config.ready_timeout_s)
        except asyncio.TimeoutError as e:
            logger.error("store_ready_timeout",
                         operation=operation,
                         timeout_s=self.config.ready_timeout_s,
                         state=self.state.value)
            raise InitTimeout(self.config.ready_timeout_s, operation or "ensure_ready") from e
        return self._backend

    async def _run_initialization(self) -> InitState:
        if not self.durable:
            self._backend = InMemoryMembershipStore(
                default_user=(self.config.default_mobile_number, self.config.default_pin),
            )
            self._set_state(InitState.READY)
            return InitState.READY

        try:
            await asyncio.wait_for(self._initialize_durable(), timeout=self.config.init_timeout_s)
        except asyncio.TimeoutError as e:
            await self._fail(e)
            raise InitTimeout(self.config.init_timeout_s) from e
        except InitError as e:
            await self._fail(e)
            raise
        except Exception as e:
            await self._fail(e)
            raise InitError(f"Database initialization failed: {e}", "initialize") from e
        return InitState.READY

    async def _initialize_durable(self) -> None:
        self._set_state(InitState.WAITING_FOR_HOST_BRIDGE)
        await self._wait_for_bridge()

        self._set_state(InitState.OPENING_CONNECTION)
        handle = await self._open_connection()

        self._set_state(InitState.CREATING_SCHEMA)
        await handle.create_schema()

        self._set_state(InitState.SEEDING_DEFAULTS)
        store = SqlMembershipStore(handle)
        await store.seed_defaults(self.config.default_mobile_number, self.config.default_pin)

        self._backend = store
        self._set_state(InitState.READY)

    async def _wait_for_bridge(self) -> bool:
        """Poll the bridge; on exhaustion proceed anyway."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.config.bridge_poll_attempts)),
            wait=wait_fixed(self.config.bridge_poll_interval_s),
            retry=retry_if_result(lambda connected: not connected) | retry_if_exception_type(Exception),
            retry_error_callback=lambda retry_state: False,
        )
        connected = await retrying(self._bridge.is_connected)
        if connected:
            logger.info("host_bridge_ready", bridge=self._bridge.name)
        else:
            logger.warning("host_bridge_not_ready_proceeding",
                           bridge=self._bridge.name,
                           attempts=self.config.bridge_poll_attempts)

        try:
            await self._bridge.prepare()
        except Exception as e:
            # may still work without it
            logger.warning("host_bridge_prepare_failed", bridge=self._bridge.name, error=str(e))
        return connected

    async def _open_connection(self) -> DatabaseHandle:
        handle = DatabaseHandle(self.config.url, debug=self._debug)
        self._handle = handle
        try:
            await asyncio.wait_for(handle.connect(), timeout=self.config.connect_timeout_s)
        except asyncio.TimeoutError as e:
            raise InitError(
                f"Connection creation timed out after {self.config.connect_timeout_s:g}s",
                "initialize",
            ) from e

        try:
            await asyncio.wait_for(handle.open(), timeout=self.config.open_timeout_s)
        except _TRANSIENT_OPEN_ERRORS as e:
            try:
                reopened = await asyncio.wait_for(handle.is_open(), timeout=self.config.open_timeout_s)
            except asyncio.TimeoutError:
                reopened = False
            if reopened:
                logger.warning("database_open_error_ignored", error=str(e) or type(e).__name__)
            elif isinstance(e, asyncio.TimeoutError):
                raise InitError(
                    f"Database open timed out after {self.config.open_timeout_s:g}s",
                    "initialize",
                ) from e
            else:
                raise

        if not await handle.is_open():
            raise InitError("Database failed to open", "initialize")
        return handle

    async def _fail(self, error: BaseException) -> None:
        logger.error("store_init_failed",
                     stage=self.state.value,
                     error=str(error) or type(error).__name__)
        self._backend = None
        if self._handle is not None:
            await self._handle.dispose()
            self._handle = None
        self._set_state(InitState.FAILED)

    @staticmethod
    def _consume_init_result(task: asyncio.Task) -> None:
        # _fail has already logged; every waiter may have timed out
        if not task.cancelled():
            task.exception()

    async def close(self) -> None:
        """Dispose the live handle and return to UNINITIALIZED."""
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, StoreError):
                pass
        self._init_task = None
        self._backend = None
        if self._handle is not None:
            await self._handle.dispose()
            self._handle = None
        if self.state is not InitState.UNINITIALIZED:
            self._set_state(InitState.UNINITIALIZED)

    # ── Dispatch ───────────────────────────────────────────

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        backend = await self.ensure_ready(operation)
        try:
            return await getattr(backend, operation)(*args, **kwargs)
        except StoreError as e:
            if not e.operation:
                e.operation = operation
            raise
        except Exception as e:
            logger.error("store_operation_failed",
                         operation=operation,
                         backend=self.backend_name,
                         error=str(e))
            raise StatementFailure(f"{operation} failed: {e}", operation) from e

    async def get_database_path(self) -> str:
        if not self.durable:
            return "in-memory"
        path = sqlite_file_path(self.config.url)
        if path:
            return path
        url = self.config.url
        return url.split("@")[-1] if "@" in url else url

    # ── Users ──────────────────────────────────────────────

    async def authenticate_user(self, mobile_number: str, pin: str) -> bool:
        return await self._call("authenticate_user", mobile_number, pin)

    async def add_user(self, mobile_number: str, pin: str) -> bool:
        return await self._call("add_user", mobile_number, pin)

    # ── Members ────────────────────────────────────────────

    async def add_member(self, member: NewMember) -> Member:
        return await self._call("add_member", member)

    async def get_member(self, member_id: str) -> Optional[Member]:
        return await self._call("get_member", member_id)

    async def get_all_members(self) -> list[Member]:
        return await self._call("get_all_members")

    async def update_member(self, member_id: str, updates: dict[str, Any]) -> bool:
        return await self._call("update_member", member_id, updates)

    async def delete_member(self, member_id: str) -> bool:
        return await self._call("delete_member", member_id)

    # ── Reminders ──────────────────────────────────────────

    async def add_reminder(self, reminder: NewReminder) -> Reminder:
        return await self._call("add_reminder", reminder)

    async def get_all_reminders(self) -> list[Reminder]:
        return await self._call("get_all_reminders")

    async def get_member_reminders(self, member_id: str) -> list[Reminder]:
        return await self._call("get_member_reminders", member_id)

    async def mark_reminder_sent(self, reminder_id: str) -> bool:
        return await self._call("mark_reminder_sent", reminder_id)

    # ── Payment transactions ───────────────────────────────

    async def add_payment_transaction(self, payment: NewPayment) -> PaymentTransaction:
        return await self._call("add_payment_transaction", payment)

    async def get_payment_transactions(self, member_id: Optional[str] = None) -> list[PaymentTransaction]:
        return await self._call("get_payment_transactions", member_id)

    # ── Backup settings ────────────────────────────────────

    async def get_backup_settings(self) -> BackupSettings:
        return await self._call("get_backup_settings")

    async def update_backup_settings(self, settings: BackupSettings) -> None:
        await self._call("update_backup_settings", settings)

    # ── Bulk operations ────────────────────────────────────

    async def clear_all_data(self) -> None:
        await self._call("clear_all_data")

    async def replace_all(self, snapshot: BackupSnapshot) -> None:
        await self._call("replace_all", snapshot)

    async def stats(self) -> dict[str, int]:
        return await self._call("stats")
