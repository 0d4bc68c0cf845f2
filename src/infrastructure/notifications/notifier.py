# src/infrastructure/notifications/notifier.py

from abc import ABC, abstractmethod
import logging

import requests

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 1200
CONTENT_MAX_LENGTH = 20000


class NotificationSink(ABC):
    """
    Operator alerting.

    Contract: fire-and-forget. ``notify`` never raises; it returns whether
    the message was accepted so callers may log it, and nothing else.
    """

    @abstractmethod
    def notify(self, title: str, content: str) -> bool:
        ...


class WebhookNotifier(NotificationSink):
    """Posts operator alerts as JSON to a configured webhook URL."""

    def __init__(
        self,
        webhook_url: str | None,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._session = session or requests.Session()

    def notify(self, title: str, content: str) -> bool:
        title = title.strip()[:TITLE_MAX_LENGTH]
        content = content.strip()[:CONTENT_MAX_LENGTH]

        if not self._webhook_url:
            logger.info("Notification skipped (no webhook configured): %s", title)
            return False

        try:
            response = self._session.post(
                self._webhook_url,
                json={"title": title, "content": content},
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("Notification delivery failed: %s (%s)", title, exc)
            return False

        if not response.ok:
            logger.warning(
                "Notification rejected with HTTP %s: %s",
                response.status_code,
                title,
            )
            return False
        return True
