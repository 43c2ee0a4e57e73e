import asyncio
import json
import queue

import pytest
import requests.exceptions

from quaydesk.relay import (
    DOCKER_EVENT,
    DOCKER_EVENT_ERROR,
    PULL_COMPLETE,
    PULL_ERROR,
    PULL_PROGRESS,
    SubscriptionState,
    is_container_event,
    is_image_event,
    pull_error_of,
    relay,
)


class BlockingStream:
    """Engine-like stream that blocks until items are pushed or it is closed."""

    def __init__(self):
        self.queue = queue.Queue()
        self.closed = False

    def __iter__(self):
        while True:
            item = self.queue.get()
            if item is None:
                return
            yield item

    def close(self):
        self.closed = True
        self.queue.put(None)


def _event(i):
    return {"Type": "container", "Action": "start", "Actor": {"ID": f"c{i}", "Attributes": {}}, "time": i}


async def _eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_events_forwarded_in_order_without_drops():
    events = [_event(i) for i in range(200)]
    received = []

    subscription = await relay(lambda: iter(events), received.append, DOCKER_EVENT, DOCKER_EVENT_ERROR)

    # unrelated concurrent work on the same loop and pool
    await asyncio.gather(*[asyncio.to_thread(sum, range(1000)) for _ in range(20)])

    state = await subscription.wait()
    assert state == SubscriptionState.COMPLETED
    assert [n.name for n in received] == [DOCKER_EVENT] * len(events)
    assert [json.loads(n.payload) for n in received] == events
    assert subscription.forwarded == len(events)


@pytest.mark.asyncio
async def test_subscribe_returns_before_stream_ends():
    stream = BlockingStream()
    received = []

    subscription = await relay(lambda: stream, received.append, DOCKER_EVENT, DOCKER_EVENT_ERROR)
    assert subscription.state == SubscriptionState.ACTIVE

    stream.queue.put(_event(1))
    await _eventually(lambda: len(received) == 1)
    assert subscription.state == SubscriptionState.ACTIVE

    await subscription.cancel()
    assert subscription.state == SubscriptionState.CANCELLED
    assert stream.closed


@pytest.mark.asyncio
async def test_stream_error_sends_error_notification_and_fails():
    def broken_stream():
        yield _event(1)
        yield _event(2)
        raise requests.exceptions.ConnectionError("connection reset by peer")

    received = []
    subscription = await relay(broken_stream, received.append, DOCKER_EVENT, DOCKER_EVENT_ERROR)

    state = await subscription.wait()
    assert state == SubscriptionState.FAILED
    assert [n.name for n in received] == [DOCKER_EVENT, DOCKER_EVENT, DOCKER_EVENT_ERROR]
    assert received[-1].payload.startswith("Connection error:")
    assert subscription.error is not None


@pytest.mark.asyncio
async def test_async_sink_is_awaited_in_order():
    received = []

    async def sink(notification):
        await asyncio.sleep(0)
        received.append(json.loads(notification.payload)["time"])

    subscription = await relay(lambda: iter([_event(i) for i in range(50)]), sink,
                               DOCKER_EVENT, DOCKER_EVENT_ERROR)
    await subscription.wait()
    assert received == list(range(50))


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_relay():
    received = []

    def sink(notification):
        if not received:
            received.append(None)
            raise RuntimeError("window closed")
        received.append(notification)

    subscription = await relay(lambda: iter([_event(1), _event(2)]), sink,
                               DOCKER_EVENT, DOCKER_EVENT_ERROR)
    assert await subscription.wait() == SubscriptionState.COMPLETED
    assert len(received) == 2


@pytest.mark.asyncio
async def test_pull_progress_completes_or_fails():
    progress = [{"status": "Pulling fs layer", "id": "a"}, {"status": "Download complete", "id": "a"}]
    received = []
    subscription = await relay(lambda: iter(progress), received.append, PULL_PROGRESS, PULL_ERROR,
                               complete_name=PULL_COMPLETE, error_of=pull_error_of)
    assert await subscription.wait() == SubscriptionState.COMPLETED
    assert [n.name for n in received] == [PULL_PROGRESS, PULL_PROGRESS, PULL_COMPLETE]

    failing = [{"status": "Pulling"}, {"error": "manifest unknown", "errorDetail": {"message": "manifest unknown"}}]
    received = []
    subscription = await relay(lambda: iter(failing), received.append, PULL_PROGRESS, PULL_ERROR,
                               complete_name=PULL_COMPLETE, error_of=pull_error_of)
    assert await subscription.wait() == SubscriptionState.FAILED
    assert [n.name for n in received] == [PULL_PROGRESS, PULL_ERROR]
    assert "manifest unknown" in received[-1].payload


@pytest.mark.asyncio
async def test_open_failure_propagates_to_subscriber():
    def open_stream():
        raise requests.exceptions.ConnectionError("connection refused")

    with pytest.raises(requests.exceptions.ConnectionError):
        await relay(open_stream, lambda n: None, DOCKER_EVENT, DOCKER_EVENT_ERROR)


@pytest.mark.asyncio
async def test_independent_subscriptions():
    first, second = BlockingStream(), BlockingStream()
    got_first, got_second = [], []
    sub1 = await relay(lambda: first, got_first.append, DOCKER_EVENT, DOCKER_EVENT_ERROR)
    sub2 = await relay(lambda: second, got_second.append, PULL_PROGRESS, PULL_ERROR)

    second.queue.put({"status": "x"})
    await _eventually(lambda: got_second)
    await sub2.cancel()

    first.queue.put(_event(1))
    await _eventually(lambda: got_first)
    assert sub1.state == SubscriptionState.ACTIVE
    await sub1.cancel()


def test_event_filters():
    event = {"Type": "container", "Actor": {"ID": "abc", "Attributes": {"id": "abc"}}}
    assert is_container_event(event)
    assert is_container_event(event, "abc")
    assert not is_container_event(event, "other")
    assert not is_image_event(event)

    image_event = {"Type": "image", "Actor": {"ID": "", "Attributes": {"id": "sha256:1"}}}
    assert is_image_event(image_event, "sha256:1")
