"""Handler registry.

Maps event names to the handlers registered for them, in registration
order. Handlers are either plain coroutine functions taking
``(context, extra)`` or ``EventHandler`` instances.

Registration normally happens before the server starts, but the registry
is guarded by an ``AsyncReadWriteLock`` so handlers can also be added while
deliveries are being dispatched. Lookups return a snapshot, so a handler
registered mid-dispatch takes effect from the next delivery.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from octofer.context import Context
from octofer.locks import AsyncReadWriteLock
from octofer.webhook.events import WebhookEventType

logger = logging.getLogger(__name__)

HandlerFunc = Callable[[Context, Any], Awaitable[None]]


class EventHandler(ABC):
    """Base class for class-based event handlers.

    Example:
        >>> class Greeter(EventHandler):
        ...     async def handle(self, context, extra):
        ...         client = await context.installation_client()
        ...         ...
    """

    @abstractmethod
    async def handle(self, context: Context, extra: Any) -> None:
        """Handle one delivery.

        Args:
            context: The delivery context.
            extra: The value given when the handler was registered.

        Raising any exception marks the delivery as failed and stops the
        handlers registered after this one.
        """


Handler = Union[HandlerFunc, EventHandler]


def _event_key(event_type: Union[str, WebhookEventType]) -> str:
    if isinstance(event_type, WebhookEventType):
        return event_type.value
    key = event_type.strip().lower()
    if not key:
        raise ValueError("Event type must not be empty")
    return key


def _handler_name(handler: Handler) -> str:
    if isinstance(handler, EventHandler):
        return type(handler).__name__
    return getattr(handler, "__qualname__", None) or repr(handler)


@dataclass(frozen=True)
class RegisteredHandler:
    """A handler bound to the extra data it was registered with."""

    func: Handler
    extra: Any = None
    name: str = ""

    async def __call__(self, context: Context) -> None:
        if isinstance(self.func, EventHandler):
            await self.func.handle(context, self.extra)
        else:
            await self.func(context, self.extra)


class HandlerRegistry:
    """Event name to handler list map."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[RegisteredHandler]] = {}
        self._lock = AsyncReadWriteLock()

    async def register(
        self,
        event_type: Union[str, WebhookEventType],
        handler: Handler,
        extra: Any = None,
        name: Optional[str] = None,
    ) -> RegisteredHandler:
        """Append a handler for an event.

        Args:
            event_type: Event name (``"issues"``) or enum member.
            handler: Coroutine function or ``EventHandler`` instance.
            extra: Value passed to the handler on every call.
            name: Name used in logs; defaults to the handler's qualname.

        Raises:
            TypeError: If ``handler`` is not callable.
            ValueError: If ``event_type`` is blank.
        """
        if not isinstance(handler, EventHandler) and not callable(handler):
            raise TypeError(f"Handler must be callable, got {type(handler).__name__}")

        key = _event_key(event_type)
        registered = RegisteredHandler(
            func=handler,
            extra=extra,
            name=name or _handler_name(handler),
        )
        async with self._lock.write():
            self._handlers.setdefault(key, []).append(registered)
            position = len(self._handlers[key])

        logger.info(
            "Registered event handler",
            extra={"event": key, "handler": registered.name, "position": position},
        )
        return registered

    async def handlers_for(
        self, event_type: Union[str, WebhookEventType]
    ) -> List[RegisteredHandler]:
        """Snapshot of the handlers for an event, in registration order."""
        key = _event_key(event_type)
        async with self._lock.read():
            return list(self._handlers.get(key, ()))

    async def handler_count(
        self, event_type: Optional[Union[str, WebhookEventType]] = None
    ) -> int:
        """Number of handlers for one event, or across all events."""
        async with self._lock.read():
            if event_type is None:
                return sum(len(handlers) for handlers in self._handlers.values())
            return len(self._handlers.get(_event_key(event_type), ()))

    async def has_handlers(self, event_type: Union[str, WebhookEventType]) -> bool:
        return await self.handler_count(event_type) > 0

    async def event_types(self) -> List[str]:
        async with self._lock.read():
            return sorted(self._handlers)

    async def clear(self) -> None:
        async with self._lock.write():
            self._handlers.clear()
