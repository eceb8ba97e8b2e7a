"""
Notification Scheduler — fire-and-forget hand-off of reminder alerts.

Delivery is somebody else's job. The lifecycle engine calls schedule()
after a reminder is stored; a failure here is logged by the caller and
never undoes the reminder.

Backends:
  - LogNotificationScheduler      (default; records the request only)
  - WebhookNotificationScheduler  (POSTs to an external service via httpx)
  - NullNotificationScheduler     (drops everything)
"""
from __future__ import annotations

import abc
import structlog
from datetime import datetime
from typing import Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import NotificationConfig, get_settings

logger = structlog.get_logger()


class NotificationScheduler(abc.ABC):
    """Abstract base for notification schedulers."""

    @abc.abstractmethod
    async def schedule(self, title: str, body: str, at: datetime,
                       metadata: dict[str, Any] = None) -> None:
        """Ask the external service to show a notification at `at`."""
        ...

    async def close(self) -> None:
        return None


class NullNotificationScheduler(NotificationScheduler):
    async def schedule(self, title: str, body: str, at: datetime,
                       metadata: dict[str, Any] = None) -> None:
        return None


class LogNotificationScheduler(NotificationScheduler):
    """Records scheduling requests; useful for development and tests."""

    def __init__(self):
        self.scheduled: list[dict[str, Any]] = []

    async def schedule(self, title: str, body: str, at: datetime,
                       metadata: dict[str, Any] = None) -> None:
        entry = {"title": title, "body": body, "at": at.isoformat(), "metadata": metadata or {}}
        self.scheduled.append(entry)
        logger.info("notification_scheduled", title=title, at=entry["at"])


class WebhookNotificationScheduler(NotificationScheduler):
    """POSTs each request as JSON to a notification service endpoint."""

    def __init__(self, config: NotificationConfig = None):
        self.config = config or get_settings().notifications
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(timeout=self.config.timeout_s)
        return self.client

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, max=10))
    async def _post(self, payload: dict[str, Any]) -> None:
        client = await self._get_client()
        response = await client.post(self.config.webhook_url, json=payload)
        response.raise_for_status()

    async def schedule(self, title: str, body: str, at: datetime,
                       metadata: dict[str, Any] = None) -> None:
        await self._post({
            "title": title,
            "body": body,
            "at": at.isoformat(),
            "metadata": metadata or {},
        })
        logger.info("notification_webhook_sent", title=title, at=at.isoformat())

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()


def create_notification_scheduler(config: NotificationConfig = None) -> NotificationScheduler:
    """Factory: build the scheduler named by notifications.backend."""
    config = config or get_settings().notifications
    if config.backend == "webhook":
        if not config.webhook_url:
            raise ValueError("notifications.webhook_url is required for the webhook backend")
        return WebhookNotificationScheduler(config)
    if config.backend == "none":
        return NullNotificationScheduler()
    return LogNotificationScheduler()
