"""
Operation façade exposed to the desktop shell.

Each public coroutine of DockerCommands acquires what it needs (connection,
backend), delegates, and returns an OperationResult. The @docker_safe
decorator guarantees no exception crosses this boundary: failures are
logged and mapped onto the error taxonomy in errors.py.

Streaming operations (engine events, pull progress) return a Subscription
as soon as the stream is open; notifications then reach the given sink from
a background task. Subscriptions are tracked so close() can cancel them.
"""

import functools
import logging
from typing import Any, Callable, List, Optional

from .backend import DockerBackend, create_backend
from .config import AppConfig, get_config_manager
from .connection import ConnectionManager, default_client_factory
from .errors import DockerConnectionError, OperationError, OperationResult, from_exception
from .model import CreateContainerOptions, DockerStatus
from .relay import (
    DOCKER_EVENT,
    DOCKER_EVENT_ERROR,
    PULL_COMPLETE,
    PULL_ERROR,
    PULL_PROGRESS,
    Sink,
    Subscription,
    pull_error_of,
    relay,
)

logger = logging.getLogger(__name__)


def docker_safe(func: Callable) -> Callable:
    """
    Decorator for façade coroutines that ensures safe error handling.

    Wraps the return value in OperationResult.success; catches exceptions,
    logs them, and returns OperationResult.failure with the mapped error.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> OperationResult:
        try:
            return OperationResult.success(await func(*args, **kwargs))
        except Exception as e:
            err = from_exception(e)
            logger.error(f"Docker operation failed in {func.__name__}: {err}", exc_info=True)
            return OperationResult.failure(err)
    return wrapper


class DockerCommands:
    def __init__(self, connection: ConnectionManager, backend: DockerBackend,
                 default_tail: int = 100):
        self.connection = connection
        self.backend = backend
        self.default_tail = default_tail
        self.subscriptions: List[Subscription] = []

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None,
                    client_factory: Optional[Callable[[], Any]] = None) -> "DockerCommands":
        """Build the façade; without a config, the user's config file is used."""
        if config is None:
            config = get_config_manager().get_config()
        connection = ConnectionManager(client_factory or default_client_factory(config.docker.base_url))
        backend = create_backend(config.docker, connection)
        logger.info(f"Using {backend.mode} backend")
        return cls(connection, backend, config.docker.log_tail)

    # Connection

    async def _status_after(self, attempt) -> DockerStatus:
        try:
            await attempt()
        except DockerConnectionError:
            # already logged and recorded in the connection status
            pass
        return self.connection.current_status

    @docker_safe
    async def initialize_docker_client(self) -> DockerStatus:
        return await self._status_after(self.connection.ensure_connected)

    @docker_safe
    async def get_docker_status(self) -> DockerStatus:
        return await self.connection.status()

    @docker_safe
    async def reset_docker_client(self) -> DockerStatus:
        return await self._status_after(self.connection.reset)

    # Listing and inspection

    @docker_safe
    async def list_containers(self):
        return await self.backend.list_containers()

    @docker_safe
    async def list_images(self):
        return await self.backend.list_images()

    @docker_safe
    async def get_container_config(self, container_id: str):
        return await self.backend.inspect_container(container_id)

    @docker_safe
    async def get_container_stats(self, container_id: str):
        return await self.backend.get_stats(container_id)

    @docker_safe
    async def get_container_logs(self, container_id: str, tail_lines: Optional[int] = None,
                                 timeout: Optional[float] = None) -> str:
        tail = tail_lines if tail_lines is not None else self.default_tail
        return await self.backend.get_logs(container_id, tail, timeout)

    # Lifecycle

    @docker_safe
    async def start_container(self, container_id: str) -> None:
        await self.backend.start_container(container_id)
        logger.info(f"Started container {container_id}")

    @docker_safe
    async def stop_container(self, container_id: str) -> None:
        await self.backend.stop_container(container_id)
        logger.info(f"Stopped container {container_id}")

    @docker_safe
    async def remove_container(self, container_id: str) -> None:
        await self.backend.remove_container(container_id)
        logger.info(f"Removed container {container_id}")

    @docker_safe
    async def create_container(self, options: CreateContainerOptions) -> str:
        container_id = await self.backend.create_container(options)
        logger.info(f"Container created successfully: ID {container_id}")
        try:
            await self.backend.start_container(container_id)
        except Exception as e:
            err = from_exception(e)
            raise OperationError(
                f"Container created (ID: {container_id}), but failed to start: {err}"
            ) from e
        logger.info(f"Container started successfully: ID {container_id}")
        return container_id

    # Images

    @docker_safe
    async def pull_image(self, image_name: str, timeout: Optional[float] = None) -> None:
        await self.backend.pull_image(image_name, timeout)
        logger.info(f"Pulled image {image_name}")

    @docker_safe
    async def remove_image(self, image_id: str) -> None:
        await self.backend.remove_image(image_id)
        logger.info(f"Removed image {image_id}")

    # Streams

    def _track(self, subscription: Subscription) -> Subscription:
        self.subscriptions = [s for s in self.subscriptions if not s.done]
        self.subscriptions.append(subscription)
        return subscription

    @docker_safe
    async def pull_image_with_progress(self, image_name: str, sink: Sink) -> Subscription:
        opener = await self.backend.pull_stream(image_name)
        subscription = await relay(
            opener, sink, PULL_PROGRESS, PULL_ERROR,
            complete_name=PULL_COMPLETE, error_of=pull_error_of,
        )
        return self._track(subscription)

    @docker_safe
    async def subscribe_to_docker_events(self, sink: Sink) -> Subscription:
        opener = await self.backend.event_stream()
        subscription = await relay(opener, sink, DOCKER_EVENT, DOCKER_EVENT_ERROR)
        logger.info("Subscribed to Docker events")
        return self._track(subscription)

    async def close(self) -> None:
        for subscription in self.subscriptions:
            await subscription.cancel()
        self.subscriptions = []
        await self.connection.close()
