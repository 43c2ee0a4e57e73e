"""
Data models for the quaydesk runtime core.

This module defines immutable dataclasses (frozen=True) that represent the
canonical view of Docker resources, whichever source produced them:
  - the structured engine API (docker-py low-level client)
  - the companion `docker` CLI tool (text mode)

Records are snapshots. They are never mutated in place; a fresh query
produces fresh records.

Data Classes:
  - DockerStatus: connection state plus an optional reason
  - ContainerInfo / PortInfo: container summary as listed
  - ImageInfo: image summary (id without its "sha256:" prefix)
  - ContainerConfig / PortMapping / VolumeMapping: inspect details
  - ContainerStats: derived point-in-time resource usage
  - CreateContainerOptions: parameters for container creation
  - Notification: one serialized stream item pushed to a sink

Every record has a to_dict() used by the shell to serialize results.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Optional, Tuple, Any


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class DockerStatus:
    state: ConnectionState
    message: str = ""

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "message": self.message}


@dataclass(frozen=True)
class PortInfo:
    ip: str
    private_port: int
    public_port: int = 0  # 0 when not published
    type: str = "tcp"


@dataclass(frozen=True)
class ContainerInfo:
    id: str
    names: Tuple[str, ...]
    image: str
    state: str
    status: str
    labels: Dict[str, str] = field(default_factory=dict)
    ports: Tuple[PortInfo, ...] = ()
    created: int = 0  # Unix seconds

    @property
    def name(self) -> str:
        return self.names[0] if self.names else ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImageInfo:
    id: str
    repo_tags: Tuple[str, ...]
    size: int
    created: int

    @property
    def short_id(self) -> str:
        return self.id[:12]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PortMapping:
    host_ip: str
    host_port: str
    container_port: str
    protocol: str = "tcp"


@dataclass(frozen=True)
class VolumeMapping:
    host_path: str
    container_path: str
    mode: str = ""


@dataclass(frozen=True)
class ContainerConfig:
    id: str
    name: str
    image: str
    command: str
    created: str
    status: str
    ports: Tuple[PortMapping, ...] = ()
    volumes: Tuple[VolumeMapping, ...] = ()
    env_vars: Tuple[str, ...] = ()
    labels: Dict[str, str] = field(default_factory=dict)
    network_mode: str = ""
    restart_policy: str = "no"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContainerStats:
    cpu_usage_percent: float = 0.0
    memory_usage: int = 0
    memory_limit: int = 0
    memory_usage_percent: float = 0.0
    network_rx_bytes: int = 0
    network_tx_bytes: int = 0
    block_read_bytes: int = 0
    block_write_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CreateContainerOptions:
    image: str
    name: str = ""
    command: Optional[str] = None
    env: Tuple[str, ...] = ()
    ports: Dict[str, int] = field(default_factory=dict)  # "80/tcp" -> host port
    volumes: Tuple[str, ...] = ()  # "host:container[:mode]"
    restart_policy: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    name: str
    payload: str  # JSON text or plain error message
