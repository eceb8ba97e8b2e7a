"""
Capability bridges — host-provided integration points the durable
backend depends on before a connection can be opened.

The selector polls is_connected() for a bounded number of attempts and
then calls prepare(). Neither step is allowed to fail initialization:
a bridge that never reports ready is logged and ignored.
"""
from __future__ import annotations

import os
import structlog
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

logger = structlog.get_logger()


@runtime_checkable
class CapabilityBridge(Protocol):
    name: str

    async def is_connected(self) -> bool:
        ...

    async def prepare(self) -> None:
        ...


class NullBridge:
    """Runtime with nothing to wait for."""

    name = "none"

    async def is_connected(self) -> bool:
        return True

    async def prepare(self) -> None:
        return None


class DirectoryBridge:
    """
    Waits for the directory holding a SQLite file (a mounted volume,
    an app-data folder) to exist and be writable. prepare() creates it.
    """

    name = "directory"

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)

    @property
    def directory(self) -> Path:
        return self.db_path.expanduser().resolve().parent

    async def is_connected(self) -> bool:
        d = self.directory
        return d.is_dir() and os.access(d, os.W_OK)

    async def prepare(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.debug("directory_bridge_prepared", directory=str(self.directory))


def bridge_for_url(db_path: Optional[str]) -> CapabilityBridge:
    """Pick the bridge a database URL's storage depends on."""
    if db_path:
        return DirectoryBridge(db_path)
    return NullBridge()
