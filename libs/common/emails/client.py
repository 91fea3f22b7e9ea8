"""
Notification client.

Outbound email/push delivery lives outside this system. Services hand a
template name and data to the notification service over HTTP. Sending is
always best-effort: failures are logged and never propagate into the
business operation that triggered them.

Usage:
    from libs.common.emails.client import notify

    notify("order_confirmed", to_user_id, {"order_id": str(order.id)})
"""

import asyncio
from typing import Any, Optional

import httpx

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

_background_tasks: set[asyncio.Task] = set()


class EmailClient:
    """HTTP client for the notification service."""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10.0):
        settings = get_settings()
        self.base_url = base_url or settings.EMAIL_SERVICE_URL
        self.timeout = timeout

    async def send_template(
        self,
        template_type: str,
        to_user_id: str,
        template_data: dict[str, Any],
    ) -> bool:
        """
        Send a templated notification.

        Template types used here:
        - order_confirmed
        - order_cancelled
        - order_delivered
        - payout_failed
        - dispute_alert

        Returns:
            True if the notification service accepted it, False otherwise
        """
        payload = {
            "template_type": template_type,
            "to_user_id": to_user_id,
            "template_data": template_data,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/notifications/template", json=payload
                )
        except httpx.HTTPError as e:
            logger.error(
                "Notification %s for %s could not be sent: %s",
                template_type,
                to_user_id,
                e,
            )
            return False

        if response.status_code >= 400:
            logger.error(
                "Notification API returned %s: %s",
                response.status_code,
                response.text,
            )
            return False
        return True


_email_client: Optional[EmailClient] = None


def get_email_client() -> EmailClient:
    """Get or create the singleton EmailClient instance."""
    global _email_client
    if _email_client is None:
        _email_client = EmailClient()
    return _email_client


def notify(template_type: str, to_user_id: str, template_data: dict[str, Any]) -> None:
    """Fire-and-forget notification. Never raises."""
    if not get_settings().NOTIFICATIONS_ENABLED:
        logger.debug("Notifications disabled, dropping %s", template_type)
        return
    try:
        task = asyncio.get_running_loop().create_task(
            get_email_client().send_template(template_type, to_user_id, template_data)
        )
    except RuntimeError:
        logger.warning("No running loop, dropping notification %s", template_type)
        return
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
