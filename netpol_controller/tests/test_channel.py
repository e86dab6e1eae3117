from __future__ import annotations

import queue
import threading

import pytest

from netpol_controller.src.channel import DEFAULT_CAPACITY, EventChannel
from netpol_controller.src.models import Namespace


def _ns(name: str, resource_version: str = "1") -> Namespace:
    return Namespace(name=name, resource_version=resource_version)


def test_default_capacity_is_128() -> None:
    assert DEFAULT_CAPACITY == 128
    assert EventChannel().capacity == 128


def test_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError, match="capacity must be >= 1, got: 0"):
        EventChannel(capacity=0)


def test_preserves_order() -> None:
    channel = EventChannel(capacity=4)
    for name in ("a", "b", "c"):
        channel.push(_ns(name))

    assert [channel.pop().name for _ in range(3)] == ["a", "b", "c"]


def test_pop_with_timeout_raises_when_empty() -> None:
    channel = EventChannel(capacity=1)

    with pytest.raises(queue.Empty):
        channel.pop(timeout=0.01)


def test_push_rejects_non_namespace_values() -> None:
    channel = EventChannel(capacity=1)

    with pytest.raises(TypeError):
        channel.push("team-a")  # type: ignore[arg-type]


def test_push_blocks_when_full_until_consumer_drains() -> None:
    channel = EventChannel(capacity=2)
    channel.push(_ns("a"))
    channel.push(_ns("b"))
    pushed = threading.Event()

    def producer() -> None:
        channel.push(_ns("c"))
        pushed.set()

    thread = threading.Thread(target=producer, daemon=True)
    thread.start()

    assert not pushed.wait(timeout=0.2)
    assert channel.qsize() == 2

    assert channel.pop().name == "a"

    assert pushed.wait(timeout=2.0)
    thread.join(timeout=2.0)
    assert channel.qsize() == 2
    assert [channel.pop().name, channel.pop().name] == ["b", "c"]
