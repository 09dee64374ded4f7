"""In-memory stand-ins for the email provider and the push gateway."""

from src.modules.notifications.channels.base import (
    EmailSenderBase,
    EmailSendResult,
    PushDelivery,
    PushGatewayBase,
)
from src.modules.notifications.templates import RenderedEmail


class FakeEmailSender(EmailSenderBase):
    def __init__(self, configured: bool = True, fail: bool = False, raises: bool = False):
        self.configured = configured
        self.fail = fail
        self.raises = raises
        self.sent: list[RenderedEmail] = []

    def is_configured(self) -> bool:
        return self.configured

    async def send(self, email: RenderedEmail) -> EmailSendResult:
        if self.raises:
            raise RuntimeError("email provider unreachable")
        if self.fail:
            return EmailSendResult(success=False, error="rejected")
        self.sent.append(email)
        return EmailSendResult(success=True, message_id=f"msg-{len(self.sent)}")


class FakePushGateway(PushGatewayBase):
    def __init__(self, configured: bool = True, raises: bool = False):
        self.configured = configured
        self.raises = raises
        self.expired_endpoints: set[str] = set()
        self.delivered: list[tuple[dict, dict]] = []

    def is_configured(self) -> bool:
        return self.configured

    async def deliver(self, subscription: dict, payload: dict) -> PushDelivery:
        if self.raises:
            raise RuntimeError("push gateway down")
        if subscription["endpoint"] in self.expired_endpoints:
            return PushDelivery(success=False, expired=True, error="gone")
        self.delivered.append((subscription, payload))
        return PushDelivery(success=True)
