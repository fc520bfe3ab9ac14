from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from crmhub.context import get_correlation_id

logger = logging.getLogger("crmhub.events")


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out of domain envelopes; handler errors propagate to the publisher."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_name]:
            self._subscribers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> int:
        handlers = list(self._subscribers.get(event_name, []))
        event = InternalEvent(name=event_name, payload=payload)
        for handler in handlers:
            handler(event)
        logger.debug("event.published", extra={"event_name": event_name, "count": len(handlers)})
        return len(handlers)


event_bus = InProcessEventBus()

# envelopes published by the services, in order; tests clear it between cases
published_events: list[dict[str, Any]] = []


def envelope(event_type: str, actor_user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "payload": payload,
        "correlation_id": get_correlation_id(),
    }


def publish(event: dict[str, Any]) -> None:
    if event.get("correlation_id") is None:
        event["correlation_id"] = get_correlation_id()

    published_events.append(event)
    event_type = event.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, event)
