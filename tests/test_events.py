"""Event channel tests."""

from __future__ import annotations

from tidywatch.events import EventChannel, FileEvent, FileEventKind


def _event(file_id: int) -> FileEvent:
    return FileEvent(kind=FileEventKind.CREATED, file_id=file_id, path=f"/files/{file_id}")


def test_every_subscriber_receives_events() -> None:
    channel = EventChannel(queue_size=8)
    first = channel.subscribe()
    second = channel.subscribe()

    channel.publish(_event(1))

    assert [event.file_id for event in first.drain()] == [1]
    assert [event.file_id for event in second.drain()] == [1]


def test_lagging_subscriber_loses_oldest_events() -> None:
    channel = EventChannel(queue_size=2)
    subscription = channel.subscribe()

    for file_id in range(1, 5):
        channel.publish(_event(file_id))

    assert [event.file_id for event in subscription] == [3, 4]
    assert subscription.dropped == 2


def test_closed_subscription_stops_receiving() -> None:
    channel = EventChannel()
    subscription = channel.subscribe()
    subscription.close()

    channel.publish(_event(1))

    assert subscription.get(timeout=0.01) is None


def test_publish_without_subscribers_is_harmless() -> None:
    EventChannel().publish(_event(1))
