"""E-mail delivery through the Resend HTTP API."""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
import structlog

from .errors import NotificationError

LOGGER = structlog.get_logger(__name__)

RESEND_ENDPOINT = "https://api.resend.com/emails"


class Mailer(Protocol):
    async def send(self, subject: str, body: str, to: str) -> str: ...


def mask_address(address: str) -> str:
    """Hide the local part of an address for logging."""
    local, _, domain = (address or "").partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


class ResendMailer:
    """Minimal Resend client returning the created message id."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        self._transport = transport

    async def send(self, subject: str, body: str, to: str) -> str:
        payload = {
            "from": self._sender,
            "to": [to],
            "subject": subject,
            "text": body,
        }
        LOGGER.info("mail.send.start", to=mask_address(to), subject=subject)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    RESEND_ENDPOINT,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as exc:
            LOGGER.error("mail.send.transport_error", error=str(exc))
            raise NotificationError(f"Resend request failed: {exc}") from exc

        if response.is_success:
            try:
                message_id = str(response.json().get("id") or "unknown")
            except ValueError:
                # Accepted, but the body carries no usable id.
                message_id = "unknown"
            LOGGER.info("mail.send.success", id=message_id)
            return message_id
        LOGGER.error("mail.send.failed", status_code=response.status_code, body=response.text)
        raise NotificationError(f"Resend send failed with {response.status_code}: {response.text}")
