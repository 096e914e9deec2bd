"""Lifecycle notification plumbing shared by instances and the manager."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]

ANY_EVENT = "*"


class Subscription:
    """Handle returned by :meth:`EventEmitter.subscribe`."""

    def __init__(self, emitter: "EventEmitter", event: str, handler: EventHandler):
        self._emitter = emitter
        self.event = event
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._emitter._remove(self)
            self.active = False


class EventEmitter:
    """Minimal async observer registry.

    Handlers receive the payload dict. The payload passed to ``"*"``
    subscribers additionally carries the event name under ``"event"``.
    With ``isolate_errors`` a failing handler is logged and skipped instead
    of propagating to the emitter.
    """

    def __init__(self, isolate_errors: bool = False) -> None:
        self.isolate_errors = isolate_errors
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)

    def subscribe(self, event: str, handler: EventHandler) -> Subscription:
        subscription = Subscription(self, event, handler)
        self._subscriptions[event].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        handlers = self._subscriptions.get(subscription.event, [])
        if subscription in handlers:
            handlers.remove(subscription)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(event, []))

    async def emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Deliver ``payload`` to every handler subscribed to ``event``."""
        data = dict(payload or {})
        targets = list(self._subscriptions.get(event, []))
        wildcard = list(self._subscriptions.get(ANY_EVENT, []))
        for subscription in targets:
            await self._call(event, subscription.handler, data)
        for subscription in wildcard:
            await self._call(event, subscription.handler, {"event": event, **data})

    async def _call(self, event: str, handler: EventHandler, data: Dict[str, Any]) -> None:
        try:
            result = handler(data)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            if not self.isolate_errors:
                raise
            logger.error(f"Handler for {event} failed: {exc}")
