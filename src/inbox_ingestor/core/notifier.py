"""Slack incoming-webhook notifier for high-value emails."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

from inbox_ingestor.core.exceptions import NotificationError
from inbox_ingestor.core.models import IndexedDocument

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


def format_message(document: IndexedDocument) -> str:
    """Render the Slack message text for one document."""
    try:
        date_str = datetime.fromisoformat(document.date).strftime("%Y-%m-%d %H:%M:%S %Z")
    except ValueError:
        date_str = document.date

    preview = document.text
    if len(preview) > PREVIEW_LENGTH:
        preview = preview[:PREVIEW_LENGTH] + "..."

    return (
        f"*New {document.category} Email!*\n\n"
        f"*Subject:* {document.subject}\n"
        f"*From:* {document.sender}\n"
        f"*Date:* {date_str.strip()}\n"
        f"*Account:* {document.account}\n\n"
        f"*Message Preview:*\n{preview}"
    )


class SlackNotifier:
    """Post a message to a Slack incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self._client = client

    async def notify(self, document: IndexedDocument) -> None:
        """Send a notification for ``document``.

        Raises:
            NotificationError: If the webhook is not configured or the post fails.
        """
        if not self._webhook_url:
            raise NotificationError("Slack webhook URL is not configured")

        payload = {"text": format_message(document)}
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._webhook_url, json=payload, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Slack notification failed: {e}") from e

        logger.info("Slack notification sent for %s", document.id)
