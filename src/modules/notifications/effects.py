"""Effect runner: executes best-effort side effects with per-effect isolation.

A state change returns the list of effects it wants attempted (notification
rows, push, email, reports). The runner awaits them in order; an exception in
one effect is logged and recorded, and never stops the next one or reaches
the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from src.models.enums import EffectStatus

logger = logging.getLogger(__name__)


class EffectSkipped(Exception):
    """Raised by an effect that decided not to act (not configured, throttled...)."""


@dataclass
class Effect:
    name: str
    action: Callable[[], Awaitable[str | None]]


@dataclass
class EffectOutcome:
    name: str
    status: EffectStatus
    detail: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == EffectStatus.OK

    def to_dict(self) -> dict:
        return {
            "effect": self.name,
            "status": self.status.value,
            "detail": self.detail,
            "error": self.error,
        }


class EffectRunner:
    async def run(self, effects: list[Effect]) -> list[EffectOutcome]:
        outcomes: list[EffectOutcome] = []
        for effect in effects:
            try:
                detail = await effect.action()
                outcomes.append(EffectOutcome(effect.name, EffectStatus.OK, detail=detail))
            except EffectSkipped as skip:
                logger.info("Effect %s skipped: %s", effect.name, skip)
                outcomes.append(EffectOutcome(effect.name, EffectStatus.SKIPPED, detail=str(skip)))
            except Exception as exc:
                logger.exception("Effect %s failed", effect.name)
                outcomes.append(
                    EffectOutcome(effect.name, EffectStatus.FAILED, error=str(exc))
                )
        return outcomes
