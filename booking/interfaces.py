"""
Capability interfaces for best-effort external integrations.

The core never talks to Google Calendar or Firebase directly; it receives a
``CalendarSync`` and a ``Notifier`` at construction time. Both are
fire-and-forget: callers go through ``run_side_effect`` which bounds the call
with a timeout and turns every failure into a logged warning.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from shared.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PushResult:
    """Outcome of one multicast push."""

    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = field(default_factory=list)


class Notifier(Protocol):
    """Push delivery channel."""

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult: ...


class CalendarSync(Protocol):
    """External calendar mirror of appointments."""

    async def create_event(self, calendar_id: str, event_body: dict[str, Any]) -> str | None: ...

    async def update_event(
        self, calendar_id: str, event_id: str, event_body: dict[str, Any]
    ) -> bool: ...

    async def delete_event(self, calendar_id: str, event_id: str) -> bool: ...


class NullNotifier:
    """Used when push notifications are disabled."""

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult:
        logger.debug(f"Push disabled, skipping '{title}' for {len(tokens)} device(s)")
        return PushResult()


class NullCalendarSync:
    """Used when Google Calendar sync is disabled."""

    async def create_event(self, calendar_id: str, event_body: dict[str, Any]) -> str | None:
        return None

    async def update_event(
        self, calendar_id: str, event_id: str, event_body: dict[str, Any]
    ) -> bool:
        return False

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        return False


async def run_side_effect(
    operation: Callable[[], Awaitable[T]],
    name: str,
    timeout: float | None = None,
) -> T | None:
    """
    Await a best-effort side effect.

    Returns the operation result, or None when it timed out or failed.
    Never raises.
    """
    if timeout is None:
        timeout = get_settings().SIDE_EFFECT_TIMEOUT_SECONDS

    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Side effect '{name}' timed out after {timeout}s")
    except Exception as e:
        logger.warning(f"Side effect '{name}' failed: {e}", exc_info=True)
    return None
