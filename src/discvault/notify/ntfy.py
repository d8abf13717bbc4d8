"""ntfy.sh notification integration."""

import logging

import httpx

from discvault import __version__
from discvault.config import ArchiverConfig

logger = logging.getLogger(__name__)


class NtfyNotifier:
    """Sends notifications via ntfy.sh service."""

    def __init__(self, config: ArchiverConfig):
        self.config = config
        self.topic_url = config.ntfy_topic
        self.client = httpx.Client(
            timeout=config.ntfy_request_timeout,
            headers={"User-Agent": f"discvault/{__version__}"},
        )

    def send_notification(
        self,
        message: str,
        title: str | None = None,
        priority: str = "default",
        tags: str | None = None,
    ) -> bool:
        """Send a notification via ntfy."""
        if not self.topic_url:
            logger.debug("No ntfy topic configured, skipping notification")
            return False

        headers = {}
        if title:
            # HTTP headers must be latin-1
            try:
                title.encode("latin1")
                headers["Title"] = title
            except UnicodeEncodeError:
                headers["Title"] = title.encode("ascii", errors="ignore").decode("ascii")
        if priority != "default":
            headers["Priority"] = priority
        if tags:
            headers["Tags"] = tags

        try:
            response = self.client.post(
                self.topic_url,
                content=message.encode("utf-8"),
                headers=headers,
            )
            response.raise_for_status()
        except httpx.RequestError as e:
            logger.warning("Failed to send notification: %s", e)
            return False
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Notification service error %s: %s",
                e.response.status_code,
                e.response.text,
            )
            return False

        logger.debug("Sent notification: %s", title or message[:50])
        return True

    def notify_job_succeeded(
        self,
        label: str,
        device: str,
        path: str,
        *,
        duplicate: bool = False,
    ) -> bool:
        message = f"Archived {label} from {device}\n{path}"
        if duplicate:
            message += "\nIdentical content was already archived"
        return self.send_notification(
            message,
            title="Disc Archived",
            tags="discvault,archive,completed",
        )

    def notify_job_failed(
        self,
        label: str,
        device: str | None,
        reason: str,
        attempts: int,
    ) -> bool:
        """Send notification when a job gives up."""
        where = f" on {device}" if device else ""
        return self.send_notification(
            f"Failed to archive {label}{where} after {attempts} attempt(s)\n{reason}",
            title="Archive Failed",
            priority="high",
            tags="discvault,archive,failed",
        )

    def notify_drive_offline(self, device: str) -> bool:
        return self.send_notification(
            f"Drive {device} disappeared from the system",
            title="Drive Offline",
            priority="high",
            tags="discvault,drive,offline",
        )

    def notify_error(self, error_message: str, context: str | None = None) -> bool:
        """Send error notification."""
        message = f"Error: {error_message}"
        if context:
            message += f"\nContext: {context}"

        return self.send_notification(
            message,
            title="discvault Error",
            priority="high",
            tags="discvault,error,alert",
        )

    def test_notification(self) -> bool:
        """Send a test notification."""
        return self.send_notification(
            "discvault notification system is working correctly!",
            title="Test Notification",
            tags="discvault,test",
        )

    def close(self) -> None:
        self.client.close()
