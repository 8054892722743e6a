"""
Desktop Notifications
=====================

Provides desktop notification support for daemon events.
Uses libnotify (notify-send) on Linux for native notifications.
"""

import shutil
import subprocess
from typing import Optional
from enum import Enum
from dataclasses import dataclass

from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)


class NotificationType(Enum):
    """Types of notifications."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class NotificationConfig:
    """Notification configuration."""
    enabled: bool = False
    show_on_success: bool = True
    show_on_error: bool = True
    timeout_ms: int = 5000  # 5 seconds


class DesktopNotifier:
    """Sends desktop notifications for file organization events.

    Availability of ``notify-send`` is checked lazily on the first send,
    so a disabled notifier never touches the system.
    """

    APP_NAME = "tidyd"

    def __init__(self, config: Optional[NotificationConfig] = None):
        """Initialize the notifier.

        Args:
            config: Notification configuration.
        """
        self.config = config or NotificationConfig()
        self._available: Optional[bool] = None

    def _check_availability(self) -> bool:
        """Check if notification system is available."""
        available = shutil.which("notify-send") is not None
        if not available:
            logger.warning("Desktop notifications not available (notify-send not found)")
        return available

    @property
    def is_available(self) -> bool:
        """Check if notifications are enabled and available."""
        if not self.config.enabled:
            return False
        if self._available is None:
            self._available = self._check_availability()
        return self._available

    def _get_icon(self, notif_type: NotificationType) -> str:
        """Get icon for notification type."""
        icons = {
            NotificationType.INFO: "dialog-information",
            NotificationType.SUCCESS: "emblem-ok-symbolic",
            NotificationType.WARNING: "dialog-warning",
            NotificationType.ERROR: "dialog-error",
        }
        return icons.get(notif_type, "folder")

    def _get_urgency(self, notif_type: NotificationType) -> str:
        """Get urgency level for notification type."""
        urgencies = {
            NotificationType.INFO: "low",
            NotificationType.SUCCESS: "normal",
            NotificationType.WARNING: "normal",
            NotificationType.ERROR: "critical",
        }
        return urgencies.get(notif_type, "normal")

    def send(
        self,
        title: str,
        message: str,
        notif_type: NotificationType = NotificationType.INFO
    ) -> bool:
        """Send a desktop notification.

        Args:
            title: Notification title.
            message: Notification body.
            notif_type: Type of notification.

        Returns:
            True if notification was sent successfully.
        """
        if not self.is_available:
            return False

        cmd = [
            "notify-send",
            "--app-name", self.APP_NAME,
            "--icon", self._get_icon(notif_type),
            "--urgency", self._get_urgency(notif_type),
            "--expire-time", str(self.config.timeout_ms),
            title,
            message
        ]

        try:
            subprocess.run(cmd, capture_output=True, timeout=5)
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to send notification: {e}")
            return False

        logger.debug(f"Notification sent: {title}")
        return True

    def notify_outcome(self, level: str, message: str) -> None:
        """Notify about an action outcome.

        Args:
            level: Event log level value ("success", "error", ...).
            message: Outcome message.
        """
        if level == NotificationType.SUCCESS.value and self.config.show_on_success:
            self.send("File organized", message, NotificationType.SUCCESS)
        elif level == NotificationType.ERROR.value and self.config.show_on_error:
            self.send("Action failed", message[:200], NotificationType.ERROR)

    def notify_started(self, watch_count: int) -> None:
        """Notify that the watcher has started."""
        self.send(
            self.APP_NAME,
            f"Started watching {watch_count} folder(s)",
            NotificationType.INFO
        )

    def notify_stopped(self) -> None:
        """Notify that the watcher has stopped."""
        self.send(self.APP_NAME, "Stopped", NotificationType.INFO)
