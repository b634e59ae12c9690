"""Groupware mail client.

Sends outbound email through the groupware mail API. Delivery is a side effect
outside the CRM database: once accepted by the groupware service a message
cannot be recalled, so send_email steps are never compensated.
"""

from __future__ import annotations

from typing import Protocol

import httpx
from loguru import logger

from salesdesk.actions.errors import GroupwareError
from salesdesk.config.settings import settings


class EmailSender(Protocol):
    """Single-operation contract used by send_email steps."""

    def send(self, to: str, subject: str, body: str) -> dict: ...


class GroupwareMailClient:
    """httpx-based client for the groupware mail endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        sender_id: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the mail client.

        Args:
            base_url: Groupware API base URL. Defaults to settings.
            token: Bearer token for the mail scope. Defaults to settings.
            sender_id: Mailbox the message is sent from. Defaults to settings.
            timeout: Request timeout in seconds. Defaults to settings.
            transport: Optional httpx transport (mock transport in tests)
        """
        self.base_url = (base_url or settings.groupware_api_url).rstrip("/")
        self.token = token if token is not None else settings.groupware_api_token
        self.sender_id = sender_id or settings.groupware_sender_id
        self.timeout = timeout or settings.groupware_timeout_sec
        self._transport = transport

    def send(self, to: str, subject: str, body: str) -> dict:
        """Send one message.

        Returns:
            Delivery receipt with recipient, subject and the provider message id if any

        Raises:
            GroupwareError: On missing credentials, timeout, transport or HTTP failure
        """
        if not self.token:
            raise GroupwareError("Groupware mail is not configured (GROUPWARE_API_TOKEN missing)")

        url = f"{self.base_url}/users/{self.sender_id}/mail"
        payload = {"to": to, "subject": subject, "body": body, "contentType": "text"}
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise GroupwareError(f"Groupware mail request timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise GroupwareError(
                f"Groupware mail request failed: {e.response.status_code} {e.response.text}"
            ) from e
        except httpx.RequestError as e:
            raise GroupwareError(f"Groupware mail request failed: {e}") from e

        message_id = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                message_id = data.get("messageId")
        logger.info("Groupware mail sent", to=to, message_id=message_id)
        return {"to": to, "subject": subject, "message_id": message_id}
