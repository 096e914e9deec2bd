"""Action handlers that carry out the work of a phase."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from .contracts import Phase, utcnow

logger = logging.getLogger(__name__)


@runtime_checkable
class ActionHandler(Protocol):
    """Capability executed for a phase.

    Implementations either return a result mapping or raise. A result may
    list produced artifact names under ``"artifacts"``.
    """

    async def execute(self, phase: Phase, options: Dict[str, Any]) -> Dict[str, Any]:
        ...


class DefaultActionHandler:
    """Records the phase as executed without calling out anywhere."""

    async def execute(self, phase: Phase, options: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "executed": True,
            "phase": phase.name,
            "agent": phase.agent,
            "action": phase.action,
            "artifacts": [phase.creates] if phase.creates else [],
            "timestamp": utcnow().isoformat(),
        }


class ActionRegistry:
    """Lookup table of action handlers keyed by action name.

    Phases whose action (or agent) has no registered handler fall back to
    ``default``.
    """

    def __init__(self, default: Optional[ActionHandler] = None) -> None:
        self._handlers: Dict[str, ActionHandler] = {}
        self.default: ActionHandler = default or DefaultActionHandler()

    def register(self, name: str, handler: ActionHandler) -> None:
        if not isinstance(handler, ActionHandler):
            raise TypeError(f"Handler for {name!r} does not implement execute()")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def resolve(self, phase: Phase) -> ActionHandler:
        for key in (phase.action, phase.agent):
            if key and key in self._handlers:
                return self._handlers[key]
        logger.debug(f"No handler registered for phase {phase.name}; using default")
        return self.default

    async def execute(self, phase: Phase, options: Dict[str, Any]) -> Dict[str, Any]:
        handler = self.resolve(phase)
        result = await handler.execute(phase, options)
        return dict(result or {})
