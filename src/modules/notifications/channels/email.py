"""Email channel: Resend-compatible HTTP sender and sequential batch delivery."""

from __future__ import annotations

import asyncio
import logging

import httpx

from src.config import settings
from src.modules.notifications.channels.base import EmailSenderBase, EmailSendResult
from src.modules.notifications.templates import RenderedEmail

logger = logging.getLogger(__name__)


class ResendEmailSender(EmailSenderBase):
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        from_address: str | None = None,
    ) -> None:
        self.api_key = settings.email_api_key if api_key is None else api_key
        self.base_url = base_url or settings.email_api_base_url
        self.from_address = from_address or settings.email_from_address
        self.reply_to = settings.email_reply_to
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.http_timeout_seconds,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        return self._client

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, email: RenderedEmail) -> EmailSendResult:
        body: dict = {
            "from": self.from_address,
            "to": [email.to],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
        }
        if self.reply_to:
            body["reply_to"] = self.reply_to
        if email.tags:
            body["tags"] = [{"name": k, "value": v} for k, v in email.tags.items()]

        client = await self._get_client()
        try:
            response = await client.post("/emails", json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Email to %s failed: %s", email.to, exc)
            return EmailSendResult(success=False, error=str(exc))
        return EmailSendResult(success=True, message_id=response.json().get("id"))


class EmailChannel:
    """Sends a batch of emails one by one with a fixed delay between sends."""

    def __init__(self, sender: EmailSenderBase, delay_seconds: float | None = None):
        self.sender = sender
        self.delay_seconds = (
            settings.email_send_delay_seconds if delay_seconds is None else delay_seconds
        )

    def is_configured(self) -> bool:
        return self.sender.is_configured()

    async def send_batch(self, emails: list[RenderedEmail]) -> int:
        """Send every email and return how many succeeded."""
        if not self.is_configured():
            logger.info("Email sender not configured, skipping %d emails", len(emails))
            return 0

        sent = 0
        for index, email in enumerate(emails):
            if index and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            try:
                result = await self.sender.send(email)
            except Exception:
                logger.exception("Email send to %s raised", email.to)
                continue
            if result.success:
                sent += 1
            else:
                logger.warning("Email to %s not sent: %s", email.to, result.error)
        logger.info("Email batch: %d/%d sent", sent, len(emails))
        return sent
