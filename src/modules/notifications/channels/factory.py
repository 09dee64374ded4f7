"""Channel factory: shared transport adapters and their shutdown."""

from __future__ import annotations

from src.modules.notifications.channels.base import EmailSenderBase, PushGatewayBase
from src.modules.notifications.channels.email import ResendEmailSender
from src.modules.notifications.channels.push import HttpPushGateway

_instances: dict[str, EmailSenderBase | PushGatewayBase] = {}


def get_email_sender() -> EmailSenderBase:
    if "email" not in _instances:
        _instances["email"] = ResendEmailSender()
    return _instances["email"]  # type: ignore[return-value]


def get_push_gateway() -> PushGatewayBase:
    if "push" not in _instances:
        _instances["push"] = HttpPushGateway()
    return _instances["push"]  # type: ignore[return-value]


async def close_all_channels() -> None:
    """Close httpx clients on all cached adapters.

    Must be called at the end of each asyncio.run() invocation in Celery tasks
    to prevent stale clients across event loop boundaries.
    """
    for adapter in _instances.values():
        if hasattr(adapter, "_client") and adapter._client is not None:
            if not adapter._client.is_closed:
                await adapter._client.aclose()
            adapter._client = None
