"""Unit tests for the bounded notification channel."""

from __future__ import annotations

import threading

import pytest

from bepoz_toolkit.observability.notifications import (
    Notification,
    NotificationChannel,
    NotificationLevel,
)


def test_drain_preserves_publish_order() -> None:
    channel = NotificationChannel(capacity=4)
    channel.success("Reset Till completed", "Finished in 1.2s")
    channel.error("Sync failed", "timeout")
    channel.info("Catalog refreshed")

    drained = channel.drain()

    assert [item.level for item in drained] == [
        NotificationLevel.SUCCESS,
        NotificationLevel.ERROR,
        NotificationLevel.INFO,
    ]
    assert drained[0].body == "Finished in 1.2s"
    assert len(channel) == 0


def test_full_channel_drops_without_blocking() -> None:
    channel = NotificationChannel(capacity=2)

    assert channel.warning("one") is True
    assert channel.warning("two") is True
    assert channel.warning("three") is False

    assert channel.dropped == 1
    assert [item.title for item in channel.drain()] == ["one", "two"]


def test_drain_respects_max_items() -> None:
    channel = NotificationChannel(capacity=5)
    for index in range(3):
        channel.info(f"n{index}")

    assert [item.title for item in channel.drain(max_items=2)] == ["n0", "n1"]
    assert [item.title for item in channel.drain()] == ["n2"]
    with pytest.raises(ValueError):
        channel.drain(max_items=0)


def test_notification_validation_and_serialization() -> None:
    with pytest.raises(ValueError):
        Notification(NotificationLevel.INFO, "  ")
    with pytest.raises(ValueError):
        NotificationChannel(capacity=0)

    payload = Notification("warning", "Heads up", "detail").to_dict()  # type: ignore[arg-type]
    assert payload["level"] == "warning"
    assert payload["created_at"].endswith("Z")


def test_concurrent_producers() -> None:
    channel = NotificationChannel(capacity=1_000)

    def produce(prefix: str) -> None:
        for index in range(100):
            channel.info(f"{prefix}-{index}")

    threads = [threading.Thread(target=produce, args=(f"t{n}",)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(channel.drain()) == 400
    assert channel.dropped == 0
