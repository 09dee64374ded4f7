"""Push channel: delivers to stored browser subscriptions through an HTTP gateway."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

import httpx
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models.push_subscription import PushSubscription
from src.modules.notifications.channels.base import PushDelivery, PushGatewayBase, PushMessage

logger = logging.getLogger(__name__)

# Gateway answers for subscriptions the browser has revoked
_EXPIRED_STATUS_CODES = {404, 410}


@dataclass
class PushResult:
    success: int = 0
    failed: int = 0
    expired: list[uuid.UUID] = field(default_factory=list)


class HttpPushGateway(PushGatewayBase):
    def __init__(self, base_url: str | None = None, api_key: str | None = None) -> None:
        self.base_url = settings.push_gateway_url if base_url is None else base_url
        self.api_key = settings.push_gateway_api_key if api_key is None else api_key
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=settings.http_timeout_seconds,
                headers=headers,
            )
        return self._client

    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def deliver(self, subscription: dict, payload: dict) -> PushDelivery:
        client = await self._get_client()
        try:
            response = await client.post(
                "/send", json={"subscription": subscription, "payload": payload}
            )
        except httpx.HTTPError as exc:
            return PushDelivery(success=False, error=str(exc))
        if response.status_code in _EXPIRED_STATUS_CODES:
            return PushDelivery(success=False, expired=True, error="subscription expired")
        if response.status_code >= 400:
            return PushDelivery(success=False, error=f"HTTP {response.status_code}")
        return PushDelivery(success=True)


class PushChannel:
    def __init__(self, db: AsyncSession, gateway: PushGatewayBase):
        self.db = db
        self.gateway = gateway

    def is_configured(self) -> bool:
        return self.gateway.is_configured()

    async def send_to_users(
        self, user_ids: list[uuid.UUID], message: PushMessage
    ) -> PushResult:
        """Push to every subscription of the given users.

        Per-subscription failures are counted, never raised. Subscriptions the
        gateway reports as expired are removed.
        """
        result = PushResult()
        if not user_ids:
            return result

        rows = await self.db.execute(
            select(PushSubscription).where(PushSubscription.user_id.in_(user_ids))
        )
        subscriptions = list(rows.scalars().all())
        payload = message.to_payload()

        for sub in subscriptions:
            try:
                delivery = await self.gateway.deliver(
                    {"endpoint": sub.endpoint, "keys": {"p256dh": sub.p256dh, "auth": sub.auth}},
                    payload,
                )
            except Exception:
                logger.exception("Push to subscription %s raised", sub.id)
                result.failed += 1
                continue
            if delivery.success:
                result.success += 1
            else:
                result.failed += 1
                if delivery.expired:
                    result.expired.append(sub.id)

        if result.expired:
            async with self.db.begin_nested():
                await self.db.execute(
                    delete(PushSubscription).where(PushSubscription.id.in_(result.expired))
                )
            logger.info("Removed %d expired push subscriptions", len(result.expired))

        logger.info(
            "Push to %d users: %d sent, %d failed",
            len(user_ids), result.success, result.failed,
        )
        return result
