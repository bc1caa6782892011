"""Notification sub-package — sleep / wake event delivery."""

from sleep_detector.notifications.handlers import (
    NotificationDispatcher,
    NotificationHandler,
    create_dispatcher,
)

__all__ = ["NotificationDispatcher", "NotificationHandler", "create_dispatcher"]
