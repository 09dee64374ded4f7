"""Abstract base classes for outbound notification transports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from src.modules.notifications.templates import RenderedEmail


@dataclass
class EmailSendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class PushMessage:
    title: str
    message: str
    url: str | None = None
    type: str | None = None

    def to_payload(self) -> dict:
        return {
            "title": self.title,
            "message": self.message,
            "url": self.url,
            "type": self.type,
        }


@dataclass
class PushDelivery:
    """Outcome of one push to one subscription endpoint."""

    success: bool
    expired: bool = False
    error: str | None = None


class EmailSenderBase(ABC):
    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if credentials are present and sends can be attempted."""

    @abstractmethod
    async def send(self, email: RenderedEmail) -> EmailSendResult:
        """Send one email. Never raises for provider-side failures."""


class PushGatewayBase(ABC):
    @abstractmethod
    def is_configured(self) -> bool:
        """Return True if a gateway endpoint is configured."""

    @abstractmethod
    async def deliver(self, subscription: dict, payload: dict) -> PushDelivery:
        """Push ``payload`` to one browser subscription."""
