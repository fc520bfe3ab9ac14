from __future__ import annotations

from collections.abc import Generator

import pytest

from crmhub import events
from crmhub.context import reset_correlation_id, set_correlation_id
from crmhub.events import InProcessEventBus, InternalEvent


@pytest.fixture(autouse=True)
def clear_published() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


def test_bus_delivers_to_each_subscriber_once() -> None:
    bus = InProcessEventBus()
    received: list[InternalEvent] = []

    bus.subscribe("crm.contact.created", received.append)
    bus.subscribe("crm.contact.created", received.append)

    assert bus.publish("crm.contact.created", {"id": "c-1"}) == 1
    assert [event.payload for event in received] == [{"id": "c-1"}]


def test_unsubscribed_handler_stops_receiving() -> None:
    bus = InProcessEventBus()
    received: list[InternalEvent] = []
    bus.subscribe("rbac.role.assigned", received.append)
    bus.unsubscribe("rbac.role.assigned", received.append)

    assert bus.publish("rbac.role.assigned", {}) == 0
    assert received == []


def test_publish_fills_correlation_id_from_context() -> None:
    token = set_correlation_id("evt-corr-1")
    try:
        envelope = events.envelope("identity.profile.created", "user-1", {"profile_id": "p-1"})
        envelope["correlation_id"] = None
        events.publish(envelope)
    finally:
        reset_correlation_id(token)

    assert events.published_events[-1]["correlation_id"] == "evt-corr-1"
    assert events.published_events[-1]["event_type"] == "identity.profile.created"


def test_published_envelope_reaches_the_shared_bus() -> None:
    received: list[InternalEvent] = []
    events.event_bus.subscribe("tasks.task.completed", received.append)
    try:
        events.publish(events.envelope("tasks.task.completed", "user-2", {"task_id": "t-1"}))
    finally:
        events.event_bus.unsubscribe("tasks.task.completed", received.append)

    assert received[0].payload["payload"] == {"task_id": "t-1"}
