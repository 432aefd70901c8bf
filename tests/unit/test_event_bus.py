"""Unit tests for the in-process EventBus."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from marketplace_service.services.event_bus import (
    TASK_ASSIGNED,
    TASK_COMPLETED,
    TASK_CREATED,
    EventBus,
)

pytestmark = pytest.mark.unit


def test_subscribers_receive_matching_events():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(TASK_ASSIGNED, handler)

    event = bus.publish(TASK_ASSIGNED, {"task_id": "t-1"})
    bus.publish(TASK_COMPLETED, {"task_id": "t-1"})

    handler.assert_called_once_with(event)
    assert event.payload == {"task_id": "t-1"}
    assert event.timestamp.endswith("Z")


def test_wildcard_subscriber_receives_everything():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe("*", handler)

    bus.publish(TASK_CREATED, {"task_id": "t-1"})
    bus.publish(TASK_COMPLETED, {"task_id": "t-1"})

    assert [call.args[0].event_type for call in handler.call_args_list] == [
        TASK_CREATED,
        TASK_COMPLETED,
    ]


def test_failing_subscriber_does_not_stop_delivery():
    bus = EventBus()
    bus._logger = MagicMock()
    broken = MagicMock(side_effect=RuntimeError("subscriber down"), __name__="broken")
    healthy = MagicMock()
    bus.subscribe(TASK_CREATED, broken)
    bus.subscribe(TASK_CREATED, healthy)

    bus.publish(TASK_CREATED, {"task_id": "t-1"})

    healthy.assert_called_once()
    bus._logger.exception.assert_called_once()
    assert bus._logger.exception.call_args.args[0] == "Event handler failed"


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(TASK_CREATED, handler)
    bus.unsubscribe(TASK_CREATED, handler)

    bus.publish(TASK_CREATED, {"task_id": "t-1"})

    handler.assert_not_called()


def test_unknown_event_type_is_rejected():
    bus = EventBus()
    with pytest.raises(ValueError, match="Unknown event type"):
        bus.subscribe("task.exploded", MagicMock())
