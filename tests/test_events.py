"""Tests for the event bus used to decouple the core from front-ends."""

import importlib
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

events = importlib.import_module("pitch_trainer.events")


def test_subscribe_and_unsubscribe():
    bus = events.EventBus()
    received = []
    unsubscribe = bus.subscribe(events.SequenceCompleted, received.append)
    bus.publish(events.SequenceCompleted(1, 3))
    bus.publish(events.ModeChanged(events.ActivityMode.IDLE, events.ActivityMode.MEMORY_GAME))
    unsubscribe()
    unsubscribe()
    bus.publish(events.SequenceCompleted(2, 4))
    assert received == [events.SequenceCompleted(1, 3)]


def test_catch_all_subscription():
    bus = events.EventBus()
    received = []
    bus.subscribe(None, received.append)
    bus.publish(events.SequenceCompleted(1, 1))
    bus.publish(events.ModeChanged(events.ActivityMode.IDLE, events.ActivityMode.HIGH_OR_LOW))
    assert len(received) == 2


def test_failing_handler_is_logged(caplog):
    bus = events.EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("boom")

    bus.subscribe(events.SequenceCompleted, broken)
    bus.subscribe(events.SequenceCompleted, received.append)
    with caplog.at_level(logging.ERROR):
        bus.publish(events.SequenceCompleted(1, 2))
    assert received
    assert "Event handler failed for SequenceCompleted" in caplog.text
