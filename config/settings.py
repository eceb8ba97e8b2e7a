"""
Configuration loader for the gym membership engine.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./gym_membership.db"        # sqlite:// | postgresql:// | mysql://
    store_backend: str = "auto"                        # "auto" | "sql" | "memory"

    # Initialization deadlines (seconds)
    init_timeout_s: float = 30.0                       # whole initialization sequence
    ready_timeout_s: float = 20.0                      # per-call wait in ensure_ready()
    connect_timeout_s: float = 10.0                    # connection handle creation
    open_timeout_s: float = 15.0                       # first round-trip to the engine

    # Capability bridge polling
    bridge_poll_attempts: int = 100
    bridge_poll_interval_s: float = 0.1

    # Credential row seeded into an empty users table
    default_mobile_number: str = "9816810805"
    default_pin: str = "4842"


@dataclass
class LifecycleConfig:
    expiring_window_days: int = 7
    payment_reminder_lead_days: int = 3


@dataclass
class NotificationConfig:
    backend: str = "log"                # "log" | "webhook" | "none"
    webhook_url: str = ""
    timeout_s: float = 10.0


@dataclass
class Settings:
    app_name: str = "GymMembership"
    debug: bool = False
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "GYM_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.timezone = raw.get("timezone", settings.timezone)

        if "database" in raw:
            db = raw["database"] or {}
            defaults = DatabaseConfig()
            settings.database = DatabaseConfig(
                url=db.get("url", defaults.url),
                store_backend=db.get("store_backend", defaults.store_backend),
                init_timeout_s=float(db.get("init_timeout_s", defaults.init_timeout_s)),
                ready_timeout_s=float(db.get("ready_timeout_s", defaults.ready_timeout_s)),
                connect_timeout_s=float(db.get("connect_timeout_s", defaults.connect_timeout_s)),
                open_timeout_s=float(db.get("open_timeout_s", defaults.open_timeout_s)),
                bridge_poll_attempts=int(db.get("bridge_poll_attempts", defaults.bridge_poll_attempts)),
                bridge_poll_interval_s=float(db.get("bridge_poll_interval_s", defaults.bridge_poll_interval_s)),
                default_mobile_number=str(db.get("default_mobile_number", defaults.default_mobile_number)),
                default_pin=str(db.get("default_pin", defaults.default_pin)),
            )

        if "lifecycle" in raw:
            lc = raw["lifecycle"] or {}
            settings.lifecycle = LifecycleConfig(
                expiring_window_days=int(lc.get("expiring_window_days", 7)),
                payment_reminder_lead_days=int(lc.get("payment_reminder_lead_days", 3)),
            )

        if "notifications" in raw:
            nt = raw["notifications"] or {}
            settings.notifications = NotificationConfig(
                backend=nt.get("backend", "log"),
                webhook_url=nt.get("webhook_url", ""),
                timeout_s=float(nt.get("timeout_s", 10.0)),
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
