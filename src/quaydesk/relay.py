"""
Relay of engine streams (events, image pull progress) to a single sink.

docker-py exposes both streams as blocking iterators. A subscription opens
the iterator off the event loop, then a relay task pulls one item at a time
through asyncio.to_thread and hands it to the sink before asking for the
next one, so items reach the sink in engine order, one serialized JSON
payload per item.

Subscription states:
  SUBSCRIBING -> ACTIVE -> COMPLETED   stream ended
                        -> FAILED      stream error (error notification sent)
                        -> CANCELLED   cancel() called by the owner

A failed subscription is not resubscribed. Separate subscriptions share
nothing, including ordering.
"""

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from .errors import DockerError, OperationError, from_exception
from .model import Notification

logger = logging.getLogger(__name__)

DOCKER_EVENT = "docker-event"
DOCKER_EVENT_ERROR = "docker-event-error"
PULL_PROGRESS = "pull-progress"
PULL_ERROR = "pull-error"
PULL_COMPLETE = "pull-complete"

Sink = Callable[[Notification], Any]

_END = object()


class SubscriptionState(str, Enum):
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def serialize(item: Any) -> str:
    if isinstance(item, bytes):
        item = item.decode("utf-8", errors="replace")
    if isinstance(item, str):
        return item
    return json.dumps(item, default=str)


class Subscription:
    """Handle on one relayed stream; cancel() closes the stream."""

    def __init__(
        self,
        sink: Sink,
        item_name: str,
        error_name: str,
        complete_name: Optional[str] = None,
        error_of: Optional[Callable[[Any], Optional[str]]] = None,
    ):
        self.sink = sink
        self.item_name = item_name
        self.error_name = error_name
        self.complete_name = complete_name
        self.error_of = error_of
        self.state = SubscriptionState.SUBSCRIBING
        self.error: Optional[DockerError] = None
        self.forwarded = 0
        self._stream: Any = None
        self._task: Optional[asyncio.Task] = None
        self._cancelling = False

    @property
    def done(self) -> bool:
        return self.state in (
            SubscriptionState.COMPLETED,
            SubscriptionState.FAILED,
            SubscriptionState.CANCELLED,
        )

    async def start(self, open_stream: Callable[[], Any]) -> "Subscription":
        """Open the stream and start relaying; returns once the stream is open."""
        self._stream = await asyncio.to_thread(open_stream)
        self.state = SubscriptionState.ACTIVE
        self._task = asyncio.create_task(self._run(iter(self._stream)))
        return self

    async def _emit(self, name: str, payload: str) -> None:
        try:
            result = self.sink(Notification(name, payload))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.error(f"Sink failed to accept {name} notification", exc_info=True)

    async def _run(self, iterator: Iterator[Any]) -> None:
        try:
            while True:
                item = await asyncio.to_thread(next, iterator, _END)
                if item is _END or self._cancelling:
                    break
                if self.error_of is not None:
                    message = self.error_of(item)
                    if message:
                        raise OperationError(message)
                await self._emit(self.item_name, serialize(item))
                self.forwarded += 1
        except asyncio.CancelledError:
            self.state = SubscriptionState.CANCELLED
            raise
        except Exception as e:
            if self._cancelling:
                # a stream closed under the worker may fail on its way out
                self.state = SubscriptionState.CANCELLED
                return
            self.error = from_exception(e)
            self.state = SubscriptionState.FAILED
            logger.error(f"Stream relay failed after {self.forwarded} items: {self.error}")
            await self._emit(self.error_name, str(self.error))
        else:
            if self._cancelling:
                self.state = SubscriptionState.CANCELLED
                return
            self.state = SubscriptionState.COMPLETED
            if self.complete_name:
                await self._emit(self.complete_name, "")
        finally:
            self._close_stream()

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        close = getattr(stream, "close", None)
        if close is None:
            return
        try:
            close()
        except (ValueError, OSError) as e:
            # a generator still running in the worker thread refuses close()
            logger.debug(f"Could not close stream: {e}")

    async def wait(self) -> SubscriptionState:
        """Wait for the relay task to end and return the final state."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.state

    async def cancel(self) -> None:
        if self._task is None or self._task.done():
            return
        self._cancelling = True
        # closing first unblocks the worker thread waiting on the stream;
        # close() can wait on a child process, so it runs off the loop
        await asyncio.to_thread(self._close_stream)
        self._task.cancel()
        await self.wait()
        self.state = SubscriptionState.CANCELLED


async def relay(
    open_stream: Callable[[], Any],
    sink: Sink,
    item_name: str,
    error_name: str,
    complete_name: Optional[str] = None,
    error_of: Optional[Callable[[Any], Optional[str]]] = None,
) -> Subscription:
    subscription = Subscription(sink, item_name, error_name, complete_name, error_of)
    return await subscription.start(open_stream)


def pull_error_of(progress: Any) -> Optional[str]:
    """Pull progress reports failures in-band as {"error": ...}."""
    if isinstance(progress, dict) and progress.get("error"):
        return f"Failed to pull image: {progress['error']}"
    return None


def _matches(event: dict, event_type: str, object_id: Optional[str]) -> bool:
    if event.get("Type") != event_type:
        return False
    if not object_id:
        return True
    actor = event.get("Actor") or {}
    attributes = actor.get("Attributes") or {}
    return actor.get("ID") == object_id or attributes.get("id") == object_id


def is_container_event(event: dict, container_id: Optional[str] = None) -> bool:
    return _matches(event, "container", container_id)


def is_image_event(event: dict, image_id: Optional[str] = None) -> bool:
    return _matches(event, "image", image_id)
