"""
Store Factory — Process-wide BackendSelector singleton.

Configuration in settings.yaml:
    database:
      # Durable backend URL
      url: "sqlite:///./gym_membership.db"

      # Where membership data lives
      #   "auto"   : durable if the async driver is importable, else memory
      #   "sql"    : durable only (BackendUnavailable if unsupported)
      #   "memory" : in-memory dicts (lost on restart)
      store_backend: "auto"

Usage:
    from database.store_factory import create_store, get_store
    store = create_store(config)     # Create from config dict / DatabaseConfig
    store = get_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from dataclasses import fields, replace
from typing import Optional, Union

from config.settings import DatabaseConfig, get_settings
from database.selector import BackendSelector

logger = structlog.get_logger()

_instance: Optional[BackendSelector] = None


def _to_config(config: Union[dict, DatabaseConfig, None]) -> DatabaseConfig:
    if isinstance(config, DatabaseConfig):
        return config
    base = get_settings().database
    if not config:
        return base
    known = {f.name for f in fields(DatabaseConfig)}
    return replace(base, **{k: v for k, v in config.items() if k in known})


def create_store(config: Union[dict, DatabaseConfig, None] = None) -> BackendSelector:
    """
    Factory: create the process-wide store facade.

    Args:
        config: DatabaseConfig, or dict overriding keys of the configured one:
            store_backend: "auto" | "sql" | "memory"
            url: str (database URL for the durable backend)
    """
    global _instance
    if _instance is not None:
        return _instance

    db_config = _to_config(config)
    _instance = BackendSelector(db_config, debug=get_settings().debug)
    logger.info("store_created", backend=_instance.backend_name)
    return _instance


def get_store() -> BackendSelector:
    """Return the singleton store instance, creating it from settings if none exists."""
    global _instance
    if _instance is None:
        _instance = create_store()
    return _instance


def reset_store() -> None:
    """Reset the singleton (for testing). Does not close the old instance."""
    global _instance
    _instance = None
