"""Confirmation email senders."""
import logging

import httpx

from ..errors import CollaboratorError
from .base import NotificationSender

logger = logging.getLogger(__name__)

EMAILJS_API_URL = "https://api.emailjs.com"
EMAILJS_SEND_PATH = "/api/v1.0/email/send"


class EmailJsNotifier(NotificationSender):
    """Sends the confirmation template through the EmailJS REST API."""

    def __init__(
        self,
        service_id: str,
        template_id: str,
        public_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._service_id = service_id
        self._template_id = template_id
        self._public_key = public_key
        self._client = client or httpx.AsyncClient(base_url=EMAILJS_API_URL, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_confirmation(self, template_params: dict[str, str]) -> None:
        payload = {
            "service_id": self._service_id,
            "template_id": self._template_id,
            "user_id": self._public_key,
            "template_params": template_params,
        }
        try:
            response = await self._client.post(EMAILJS_SEND_PATH, json=payload)
        except httpx.HTTPError as e:
            raise CollaboratorError("notify.send", f"Email service unavailable: {e}") from e
        if response.status_code != 200:
            raise CollaboratorError("notify.send", response.text or f"HTTP {response.status_code}")
        logger.info("Confirmation email sent for order %s", template_params.get("order_id"))


class DisabledNotifier(NotificationSender):
    """Used when no email service is configured. Every send is a failure."""

    async def send_confirmation(self, template_params: dict[str, str]) -> None:
        logger.info("Email not configured; skipping confirmation for order %s", template_params.get("order_id"))
        raise CollaboratorError("notify.send", "Email notifications are not configured")
