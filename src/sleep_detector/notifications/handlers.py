"""Notification handlers — log and webhook delivery of sleep / wake events.

Architecture
~~~~~~~~~~~~
* **NotificationHandler** — abstract base for delivery channels.
* **LogHandler / WebhookHandler** — concrete channels.
* **NotificationDispatcher** — builds the sleep / wake messages and fans
  them out with error isolation.
* **create_dispatcher()** — factory that wires handlers from settings.

The detector only calls :meth:`NotificationDispatcher.notify_sleep_detected`
and :meth:`NotificationDispatcher.notify_wake_detected`; rendering and
delivery stay on this side of the boundary.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import structlog

from sleep_detector.models import NotificationKind, SleepNotification

if TYPE_CHECKING:
    from sleep_detector.config import Settings

logger = structlog.get_logger(__name__)


def format_minutes(minutes: float) -> str:
    """``95`` → ``"1h 35m"``, ``40`` → ``"40m"``."""
    hours, remainder = divmod(int(max(0.0, minutes)), 60)
    if hours > 0:
        return f"{hours}h {remainder}m"
    return f"{remainder}m"


# ── Dispatch result ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome summary for a single ``dispatch()`` call."""

    notification_id: str | None
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def all_ok(self) -> bool:
        return len(self.failed) == 0


# ── Abstract handler ──────────────────────────────────────────


class NotificationHandler(ABC):
    """Contract for notification delivery channels."""

    name: str = "base"

    @abstractmethod
    async def send(self, notification: SleepNotification) -> bool:
        """Deliver a notification.  Return ``True`` on success."""


# ── Concrete handlers ────────────────────────────────────────


class LogHandler(NotificationHandler):
    """Write notifications to the structured log (always enabled)."""

    name = "log"

    async def send(self, notification: SleepNotification) -> bool:
        logger.info(
            "notification.log",
            kind=notification.kind.value,
            title=notification.title,
            message=notification.message,
        )
        return True


class WebhookHandler(NotificationHandler):
    """POST notification JSON to an external webhook URL."""

    name = "webhook"

    def __init__(self, url: str, *, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def send(self, notification: SleepNotification) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._url, json=notification.model_dump(mode="json"),
                )
                resp.raise_for_status()
            logger.info("notification.webhook_sent", url=self._url, notification_id=notification.id)
            return True
        except httpx.HTTPError as exc:
            logger.error("notification.webhook_failed", url=self._url, error=str(exc))
            return False


# ── Dispatcher ────────────────────────────────────────────────


class NotificationDispatcher:
    """Fan-out notifications to registered handlers with error isolation.

    Each handler is invoked independently — a failure in one channel
    never blocks delivery to the others.
    """

    def __init__(
        self,
        *,
        handlers: list[NotificationHandler] | None = None,
        sleep_detection_enabled: bool = True,
        wake_detection_enabled: bool = True,
    ) -> None:
        self._handlers: list[NotificationHandler] = handlers or [LogHandler()]
        self.sleep_detection_enabled = sleep_detection_enabled
        self.wake_detection_enabled = wake_detection_enabled

    # ── Handler management ────────────────────────────────────

    def add_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    @property
    def handler_names(self) -> list[str]:
        return [h.name for h in self._handlers]

    # ── Detector-facing API ───────────────────────────────────

    async def notify_sleep_detected(self, inactive_minutes: float) -> DispatchResult:
        if not self.sleep_detection_enabled:
            return DispatchResult(notification_id=None, skipped=True)
        return await self.dispatch(
            SleepNotification(
                kind=NotificationKind.SLEEP_DETECTED,
                title="Sleep Detected",
                message=(
                    f"You've been inactive for {format_minutes(inactive_minutes)}. "
                    "Sleep tracking started."
                ),
                inactive_minutes=inactive_minutes,
            )
        )

    async def notify_wake_detected(self, sleep_minutes: float, quality: str) -> DispatchResult:
        if not self.wake_detection_enabled:
            return DispatchResult(notification_id=None, skipped=True)
        return await self.dispatch(
            SleepNotification(
                kind=NotificationKind.WAKE_DETECTED,
                title="Good Morning!",
                message=(
                    f"You slept for {format_minutes(sleep_minutes)}. Sleep quality: {quality}"
                ),
                sleep_minutes=sleep_minutes,
                quality=quality,
            )
        )

    # ── Dispatch ──────────────────────────────────────────────

    async def dispatch(self, notification: SleepNotification) -> DispatchResult:
        """Send *notification* to every handler, collecting per-handler outcomes.

        A handler that raises is caught, logged, and marked as failed so
        remaining handlers still execute.
        """
        sent: list[str] = []
        failed: list[str] = []

        for handler in self._handlers:
            try:
                ok = await handler.send(notification)
                (sent if ok else failed).append(handler.name)
            except Exception:
                logger.exception(
                    "notification.handler_error",
                    handler=handler.name,
                    notification_id=notification.id,
                )
                failed.append(handler.name)

        result = DispatchResult(notification_id=notification.id, sent=sent, failed=failed)
        if result.failed:
            logger.warning(
                "notification.partial_failure",
                notification_id=notification.id,
                failed=result.failed,
            )
        return result


# ── Factory ───────────────────────────────────────────────────


def create_dispatcher(settings: Settings) -> NotificationDispatcher:
    """Build a :class:`NotificationDispatcher` wired from application settings.

    * **LogHandler** is always registered.
    * **WebhookHandler** is added when ``settings.webhook_url`` is non-empty.
    * Sleep / wake messages follow ``notify_sleep_detected`` and
      ``notify_wake_detected``.
    """
    dispatcher = NotificationDispatcher(
        sleep_detection_enabled=settings.notify_sleep_detected,
        wake_detection_enabled=settings.notify_wake_detected,
    )

    if settings.webhook_url:
        dispatcher.add_handler(
            WebhookHandler(settings.webhook_url, timeout=settings.webhook_timeout_seconds)
        )

    return dispatcher
