"""Outbound webhook announcing that a parse reached a terminal state."""

from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import APIClientError, APITimeoutError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


class NotificationService:
    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[int] = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.notifications.webhook_url
        self.timeout = timeout or settings.notifications.timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send_parse_finished(self, payload: Dict[str, Any]) -> bool:
        """POST ``payload`` to the configured webhook.

        Returns False when no webhook is configured.

        Raises:
            APIClientError: If the webhook rejects the request or is unreachable.
        """
        if not self.enabled:
            LOGGER.debug("No notification webhook configured, skipping")
            return False

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise APITimeoutError(f"Notification webhook timed out: {e}", original_error=e) from e
        except httpx.HTTPError as e:
            raise APIClientError(f"Notification webhook failed: {e}", original_error=e) from e

        LOGGER.info(
            f"Sent parse notification for {payload.get('parse_id')}",
            extra={"status": payload.get("status")},
        )
        return True
