"""
Docker engine backends.

One interface, DockerBackend, with two interchangeable implementations
chosen once from configuration (see create_backend):

  - ApiBackend ("api"): structured mode. Talks to the engine through the
    docker-py low-level client obtained from the ConnectionManager and
    normalizes the raw dicts it returns.
  - CliBackend ("cli"): text mode. Runs the `docker` CLI with fixed
    `--format` templates and parses its output into the same model.

docker-py and subprocess calls block, so every call is moved off the event
loop with asyncio.to_thread. Failures are raised as DockerError subclasses
(errors.from_exception); the command façade turns them into results.

Streams (engine events, pull progress) are exposed as openers: an async
call that resolves the connection and returns a zero-argument callable
opening a blocking iterator, for use by relay.Subscription.
"""

import asyncio
import json
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, List, Optional, Tuple

from .config import DockerConfig
from .connection import ConnectionManager
from .errors import (
    DockerConnectionError,
    DockerError,
    NotFoundError,
    OperationError,
    PermissionDeniedError,
    from_exception,
)
from .model import (
    ContainerConfig,
    ContainerInfo,
    ContainerStats,
    CreateContainerOptions,
    ImageInfo,
)
from .normalize import (
    CONTAINER_FORMAT,
    IMAGE_FORMAT,
    container_config_from_inspect,
    container_from_summary,
    image_from_summary,
    parse_container_lines,
    parse_image_lines,
)
from .stats import STATS_FORMAT, parse_stats_line, stats_from_api

logger = logging.getLogger(__name__)

StreamOpener = Callable[[], Any]


def split_image_name(image_name: str) -> Tuple[str, Optional[str]]:
    """Split "repo[:tag]" into (repo, tag); tag defaults to "latest".

    A colon inside the registry part ("localhost:5000/app") is not a tag
    separator. Digest references are returned whole with no tag.
    """
    if "@" in image_name:
        return image_name, None
    last_slash = image_name.rfind("/")
    last_colon = image_name.rfind(":")
    if last_colon > last_slash:
        return image_name[:last_colon], image_name[last_colon + 1:] or "latest"
    return image_name, "latest"


async def _with_timeout(coro, timeout: Optional[float]):
    if timeout is None:
        return await coro
    return await asyncio.wait_for(coro, timeout)


class DockerBackend(ABC):
    """Engine operations shared by the structured and text backends."""

    mode = ""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    @abstractmethod
    async def list_containers(self) -> List[ContainerInfo]: ...

    @abstractmethod
    async def list_images(self) -> List[ImageInfo]: ...

    @abstractmethod
    async def inspect_container(self, container_id: str) -> ContainerConfig: ...

    @abstractmethod
    async def get_stats(self, container_id: str) -> ContainerStats: ...

    @abstractmethod
    async def get_logs(self, container_id: str, tail: int, timeout: Optional[float] = None) -> str: ...

    @abstractmethod
    async def start_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def stop_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def remove_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def create_container(self, options: CreateContainerOptions) -> str:
        """Create (not start) a container and return its id."""

    @abstractmethod
    async def remove_image(self, image_id: str) -> None: ...

    @abstractmethod
    async def pull_image(self, image_name: str, timeout: Optional[float] = None) -> None: ...

    @abstractmethod
    async def event_stream(self) -> StreamOpener: ...

    @abstractmethod
    async def pull_stream(self, image_name: str) -> StreamOpener: ...


class ApiBackend(DockerBackend):
    mode = "api"

    def __init__(self, connection: ConnectionManager, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.connection = connection

    async def _api(self) -> Any:
        client = await self.connection.ensure_connected()
        return client.api

    async def list_containers(self) -> List[ContainerInfo]:
        api = await self._api()
        raw = await asyncio.to_thread(api.containers, all=True)
        return [container_from_summary(c) for c in raw]

    async def list_images(self) -> List[ImageInfo]:
        api = await self._api()
        raw = await asyncio.to_thread(api.images)
        return [image_from_summary(i) for i in raw]

    async def inspect_container(self, container_id: str) -> ContainerConfig:
        api = await self._api()
        raw = await asyncio.to_thread(api.inspect_container, container_id)
        return container_config_from_inspect(raw, container_id)

    async def get_stats(self, container_id: str) -> ContainerStats:
        api = await self._api()
        raw = await asyncio.to_thread(api.stats, container_id, stream=False)
        if not raw:
            raise NotFoundError(f"No stats found for container {container_id}")
        return stats_from_api(raw)

    async def get_logs(self, container_id: str, tail: int, timeout: Optional[float] = None) -> str:
        api = await self._api()
        logs_bytes = await _with_timeout(
            asyncio.to_thread(api.logs, container_id, stdout=True, stderr=True, tail=tail),
            timeout if timeout is not None else self.timeout,
        )
        return logs_bytes.decode('utf-8', errors='replace')

    async def start_container(self, container_id: str) -> None:
        api = await self._api()
        await asyncio.to_thread(api.start, container_id)

    async def stop_container(self, container_id: str) -> None:
        api = await self._api()
        await asyncio.to_thread(api.stop, container_id)

    async def remove_container(self, container_id: str) -> None:
        api = await self._api()
        await asyncio.to_thread(api.remove_container, container_id)

    async def create_container(self, options: CreateContainerOptions) -> str:
        api = await self._api()
        exposed = []
        for container_port in options.ports:
            port, _, proto = container_port.partition("/")
            exposed.append((int(port), proto or "tcp"))
        host_config = api.create_host_config(
            port_bindings=dict(options.ports) or None,
            binds=list(options.volumes) or None,
            restart_policy={"Name": options.restart_policy} if options.restart_policy else None,
        )
        response = await asyncio.to_thread(
            api.create_container,
            options.image,
            command=options.command,
            name=options.name or None,
            environment=list(options.env) or None,
            ports=exposed or None,
            host_config=host_config,
        )
        return response["Id"]

    async def remove_image(self, image_id: str) -> None:
        api = await self._api()
        await asyncio.to_thread(api.remove_image, image_id)

    @staticmethod
    def _drain_pull(api: Any, image_name: str) -> None:
        repository, tag = split_image_name(image_name)
        for progress in api.pull(repository, tag=tag, stream=True, decode=True):
            if isinstance(progress, dict) and progress.get("error"):
                raise OperationError(f"Failed to pull image: {progress['error']}")

    async def pull_image(self, image_name: str, timeout: Optional[float] = None) -> None:
        api = await self._api()
        try:
            await _with_timeout(
                asyncio.to_thread(self._drain_pull, api, image_name),
                timeout if timeout is not None else self.timeout,
            )
        except DockerError:
            raise
        except Exception as e:
            raise OperationError(f"Failed to pull image: {from_exception(e).message}") from e

    async def event_stream(self) -> StreamOpener:
        api = await self._api()
        return lambda: api.events(decode=True)

    async def pull_stream(self, image_name: str) -> StreamOpener:
        api = await self._api()
        repository, tag = split_image_name(image_name)
        return lambda: PullProgressStream(api.pull(repository, tag=tag, stream=True, decode=True))


class PullProgressStream:
    """Wraps docker-py's pull generator so close() works from another thread.

    A generator cannot be closed while a worker thread is inside next(); the
    close request is then recorded and honoured when the next progress item
    arrives, where the generator (and its HTTP response) is closed.
    """

    def __init__(self, progress: Iterator[Any]):
        self._progress = progress
        self._closed = False

    def __iter__(self) -> Iterator[Any]:
        try:
            for item in self._progress:
                if self._closed:
                    return
                yield item
        finally:
            self._close_progress()

    def close(self) -> None:
        self._closed = True
        self._close_progress()

    def _close_progress(self) -> None:
        close = getattr(self._progress, "close", None)
        if close is None:
            return
        try:
            close()
        except ValueError:
            logger.debug("Pull stream busy in a worker thread; closing at the next item")


class ProcessLineStream:
    """Line iterator over a long-running CLI process; close() terminates it.

    stderr is merged into stdout so a chatty child cannot block on a full
    stderr pipe. With decode_json, lines that are not JSON are kept only as
    the error text reported on a non-zero exit.
    """

    def __init__(self, cmd: List[str], decode_json: bool = False):
        self.cmd = cmd
        self.decode_json = decode_json
        self.process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,  # Line buffered
            encoding='utf-8',
            errors='replace'
        )

    def __iter__(self) -> Iterator[Any]:
        last_line = ""
        for line in self.process.stdout:
            line = line.rstrip("\n")
            if not line:
                continue
            last_line = line
            if not self.decode_json:
                yield {"status": line}
                continue
            try:
                item = json.loads(line)
            except ValueError:
                logger.debug(f"Non-JSON output from {self.cmd[1]}: {line!r}")
                continue
            yield item
        returncode = self.process.wait()
        if returncode not in (0, -15):  # -15: terminated by close()
            raise CliBackend.error_from_output(last_line or f"{self.cmd[1]} exited with {returncode}")

    def close(self) -> None:
        if self.process.poll() is None:
            self.process.terminate()
            try:
                self.process.wait(timeout=0.5)
            except subprocess.TimeoutExpired:
                self.process.kill()


class CliBackend(DockerBackend):
    mode = "cli"

    def __init__(self, cli_path: str = "docker", timeout: Optional[float] = None,
                 strict_timestamps: bool = False):
        super().__init__(timeout)
        self.cli_path = cli_path
        self.strict_timestamps = strict_timestamps

    @staticmethod
    def error_from_output(stderr: str) -> DockerError:
        lowered = stderr.lower()
        if "no such" in lowered or "not found" in lowered:
            return NotFoundError(stderr)
        if "permission denied" in lowered:
            return PermissionDeniedError(stderr)
        if "cannot connect to the docker daemon" in lowered:
            return DockerConnectionError(stderr)
        return OperationError(stderr)

    async def _run(self, args: List[str], timeout: Optional[float] = None) -> str:
        cmd = [self.cli_path] + args
        logger.debug(f"Running {' '.join(cmd)}")
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                cmd,
                check=False,
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout if timeout is not None else self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise from_exception(e) from e
        if result.returncode != 0:
            raise self.error_from_output(
                (result.stderr or result.stdout or f"{args[0]} failed").strip()
            )
        return result.stdout

    async def list_containers(self) -> List[ContainerInfo]:
        output = await self._run(["ps", "-a", "--no-trunc", "--format", CONTAINER_FORMAT])
        return parse_container_lines(output, self.strict_timestamps)

    async def list_images(self) -> List[ImageInfo]:
        output = await self._run(["images", "--no-trunc", "--format", IMAGE_FORMAT])
        return parse_image_lines(output, self.strict_timestamps)

    async def inspect_container(self, container_id: str) -> ContainerConfig:
        output = await self._run(["inspect", "--type", "container", container_id])
        try:
            documents = json.loads(output)
        except ValueError as e:
            raise OperationError(f"Unparsable inspect output: {e}") from e
        if not documents:
            raise NotFoundError(f"No such container: {container_id}")
        return container_config_from_inspect(documents[0], container_id)

    async def get_stats(self, container_id: str) -> ContainerStats:
        output = await self._run(["stats", "--no-stream", "--format", STATS_FORMAT, container_id])
        return parse_stats_line(output, container_id)

    async def get_logs(self, container_id: str, tail: int, timeout: Optional[float] = None) -> str:
        try:
            return await self._run(["logs", "--tail", str(tail), container_id], timeout)
        except DockerError as e:
            raise OperationError(f"Failed to get logs: {e.message}") from e

    async def start_container(self, container_id: str) -> None:
        await self._run(["start", container_id])

    async def stop_container(self, container_id: str) -> None:
        await self._run(["stop", container_id])

    async def remove_container(self, container_id: str) -> None:
        await self._run(["rm", container_id])

    async def create_container(self, options: CreateContainerOptions) -> str:
        args = ["create"]
        if options.name:
            args += ["--name", options.name]
        for env in options.env:
            args += ["-e", env]
        for container_port, host_port in options.ports.items():
            args += ["-p", f"{host_port}:{container_port}"]
        for volume in options.volumes:
            args += ["-v", volume]
        if options.restart_policy:
            args += ["--restart", options.restart_policy]
        args.append(options.image)
        if options.command:
            args += shlex.split(options.command)
        output = await self._run(args)
        return output.strip()

    async def remove_image(self, image_id: str) -> None:
        await self._run(["rmi", image_id])

    async def pull_image(self, image_name: str, timeout: Optional[float] = None) -> None:
        try:
            await self._run(["pull", image_name], timeout)
        except DockerError as e:
            raise OperationError(f"Failed to pull image: {e.message}") from e

    async def event_stream(self) -> StreamOpener:
        cmd = [self.cli_path, "events", "--format", "{{json .}}"]
        return lambda: ProcessLineStream(cmd, decode_json=True)

    async def pull_stream(self, image_name: str) -> StreamOpener:
        cmd = [self.cli_path, "pull", image_name]
        return lambda: ProcessLineStream(cmd)


def create_backend(config: DockerConfig, connection: ConnectionManager) -> DockerBackend:
    """Pick the backend for the configured mode."""
    if config.mode == "cli":
        return CliBackend(config.cli_path, config.operation_timeout, config.strict_timestamps)
    return ApiBackend(connection, config.operation_timeout)
