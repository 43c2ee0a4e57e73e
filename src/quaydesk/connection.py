"""
Docker engine connection lifecycle.

ConnectionManager owns the one docker.DockerClient of a process (or of a
test). It is created explicitly and passed to every component that talks to
the engine; nothing keeps a private long-lived client of its own.

States:
  UNINITIALIZED -> CONNECTED      first successful ensure_connected()
  UNINITIALIZED -> ERROR(reason)  connection attempt failed
  CONNECTED     -> ERROR(reason)  status() ping failed (handle kept)
  any           -> DISCONNECTED   reset()/close() dropped the handle

Locking:
  A single asyncio.Lock guards the handle and the status. It is held only
  to read or replace them, never across an engine call. Concurrent
  ensure_connected() callers share one in-flight connection task, so one
  connection attempt is made and every caller sees its result.

Connection failures are reported, not retried; callers own retry policy.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import docker

from .errors import DockerConnectionError, from_exception
from .model import ConnectionState, DockerStatus

logger = logging.getLogger(__name__)


def default_client_factory(base_url: Optional[str] = None) -> Callable[[], Any]:
    """Return a zero-argument callable that opens a docker-py client."""
    def factory() -> docker.DockerClient:
        if base_url:
            return docker.DockerClient(base_url=base_url)
        return docker.from_env()
    return factory


class ConnectionManager:
    def __init__(self, client_factory: Optional[Callable[[], Any]] = None):
        self._client_factory = client_factory or default_client_factory()
        self._client: Optional[Any] = None
        self._status = DockerStatus(ConnectionState.UNINITIALIZED)
        self._connecting: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def current_status(self) -> DockerStatus:
        """Last known status, without probing the engine."""
        return self._status

    async def ensure_connected(self) -> Any:
        """Return the live client, connecting first if there is none.

        Raises DockerConnectionError when the connection attempt fails.
        """
        async with self._lock:
            if self._client is not None:
                return self._client
            if self._connecting is None:
                self._connecting = asyncio.ensure_future(self._connect())
            pending = self._connecting
        # shield: one caller being cancelled must not abort the shared attempt
        return await asyncio.shield(pending)

    async def _connect(self) -> Any:
        logger.info("Connecting to Docker engine")
        try:
            client = await asyncio.to_thread(self._client_factory)
        except Exception as e:
            message = f"Failed to connect to Docker: {e}"
            logger.error(message)
            async with self._lock:
                self._status = DockerStatus(ConnectionState.ERROR, message)
                self._connecting = None
            raise DockerConnectionError(message) from e

        async with self._lock:
            self._client = client
            self._status = DockerStatus(ConnectionState.CONNECTED)
            self._connecting = None
        logger.info("Connected to Docker engine")
        return client

    async def status(self) -> DockerStatus:
        """Ping the engine through the existing client.

        Before the first connection it connects instead and reports the
        outcome. A failed ping moves the status to ERROR and keeps the
        client; ERROR is sticky until reset(). After reset() or close() left
        no client, the last known status is returned unchanged.
        """
        async with self._lock:
            client = self._client
            current = self._status
        if current.state == ConnectionState.UNINITIALIZED:
            try:
                await self.ensure_connected()
            except DockerConnectionError:
                pass  # recorded in the status
            return self._status
        if client is None or current.state == ConnectionState.ERROR:
            return current

        try:
            await asyncio.to_thread(client.ping)
        except Exception as e:
            err = from_exception(e)
            message = f"Docker is not responding: {err.message}"
            logger.warning(message)
            async with self._lock:
                if self._client is client:
                    self._status = DockerStatus(ConnectionState.ERROR, message)
                return self._status

        return current

    async def reset(self) -> Any:
        """Drop the current client unconditionally and connect again."""
        async with self._lock:
            old_client = self._client
            self._client = None
            self._status = DockerStatus(ConnectionState.DISCONNECTED)
            if self._connecting is None:
                self._connecting = asyncio.ensure_future(self._connect())
            pending = self._connecting
        logger.info("Resetting Docker connection")
        if old_client is not None:
            await self._close_client(old_client)
        return await asyncio.shield(pending)

    async def close(self) -> None:
        async with self._lock:
            old_client = self._client
            self._client = None
            self._status = DockerStatus(ConnectionState.DISCONNECTED)
        if old_client is not None:
            await self._close_client(old_client)

    @staticmethod
    async def _close_client(client: Any) -> None:
        try:
            await asyncio.to_thread(client.close)
        except Exception as e:
            logger.warning(f"Error closing Docker client: {e}")
