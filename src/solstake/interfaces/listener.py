"""EventListener protocol - push-based program event subscription."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, Union

from solstake.models.events import StakeEvent

EventHandler = Callable[[StakeEvent], Union[None, Awaitable[None]]]


class SubscriptionHandle(Protocol):
    """Opaque handle returned by subscribe()."""

    id: int
    event_name: str

    @property
    def active(self) -> bool:
        ...


class EventListener(Protocol):
    """Delivers decoded program events to handlers, in arrival order."""

    async def subscribe(self, event_name: str, handler: EventHandler) -> SubscriptionHandle:
        """Start delivering ``event_name`` events to ``handler``."""
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivery. Idempotent; no handler fires after this returns."""
        ...

    async def close(self) -> None:
        """Unsubscribe everything."""
        ...
