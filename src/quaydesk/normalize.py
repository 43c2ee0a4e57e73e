"""
Resource normalization: raw engine records and CLI output -> canonical model.

Two input modes produce the same dataclasses (see model.py):

Structured mode:
  Raw dicts from docker-py's low-level client (`client.api.containers()`,
  `client.api.images()`, `client.api.inspect_container()`). Every optional
  field defaults to empty/zero; container names lose their leading "/";
  image ids lose their "sha256:" prefix; ports without protocol are "tcp".

Text mode:
  Lines printed by the `docker` CLI with an explicit `--format` template whose
  fields are joined by FIELD_SEPARATOR. Lines with too few fields are dropped
  (logged at debug level), never fatal.

Shared sub-parsers:
  - parse_size(): "1.5GB" -> bytes, binary (1024-based) units
  - parse_timestamp(): tries TIMESTAMP_FORMATS, falls back to "now"
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import OperationError
from .model import (
    ContainerConfig,
    ContainerInfo,
    ImageInfo,
    PortInfo,
    PortMapping,
    VolumeMapping,
)

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"

IMAGE_FORMAT = "{{.ID}}|{{.Repository}}:{{.Tag}}|{{.Size}}|{{.CreatedAt}}"
IMAGE_FIELDS = 4

CONTAINER_FORMAT = (
    "{{.ID}}|{{.Names}}|{{.Image}}|{{.State}}|{{.Status}}|"
    "{{.Ports}}|{{.CreatedAt}}|{{.Labels}}"
)
CONTAINER_FIELDS = 8
# Label values may contain FIELD_SEPARATOR, so Labels is the last field
# and lines are split at most CONTAINER_FIELDS - 1 times.

_SIZE_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+))\s*([A-Za-z]*)$")

# Binary multipliers; the "iB" spellings are what `docker stats` prints.
_SIZE_UNITS = {
    "B": 0,
    "K": 1, "KB": 1, "KIB": 1,
    "M": 2, "MB": 2, "MIB": 2,
    "G": 3, "GB": 3, "GIB": 3,
    "T": 4, "TB": 4, "TIB": 4,
}

TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
    "%a %b %d %H:%M:%S %Y",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S",
)

_ZONE_NAME_RE = re.compile(r"(\s[+-]\d{4})\s+[A-Z]{2,5}$")
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")

_PORT_RE = re.compile(
    r"^(?:(?P<ip>.*):(?P<public>\d+)(?:-\d+)?->)?(?P<private>\d+)(?:-\d+)?/(?P<proto>\w+)$"
)


# --- shared sub-parsers ---

def parse_size(size_str: str) -> int:
    """Parse a human size string ("10MB", "1.5 GiB", "512") into bytes.

    Units are matched case-insensitively and are always 1024-based. A missing
    or unrecognized unit means raw bytes; empty or unparsable input yields 0.
    """
    if not size_str:
        return 0
    match = _SIZE_RE.match(size_str.strip())
    if not match:
        return 0
    value = float(match.group(1))
    power = _SIZE_UNITS.get(match.group(2).upper(), 0)
    return int(round(value * (1024 ** power)))


def _clean_timestamp(timestamp_str: str) -> str:
    value = timestamp_str.strip()
    # "2024-01-02 10:00:00 +0000 UTC" -> drop the zone abbreviation
    value = _ZONE_NAME_RE.sub(r"\1", value)
    # Engine timestamps carry nanoseconds; strptime takes at most micro.
    value = _FRACTION_RE.sub(r".\1", value)
    if value.endswith("Z"):
        value = value[:-1] + "+0000"
    return value


def parse_timestamp(timestamp_str: str, strict: bool = False) -> int:
    """Convert a CLI timestamp into Unix seconds (UTC).

    Tries TIMESTAMP_FORMATS in order; naive values are taken as UTC. When none
    match, returns the current time (logged as a warning) unless `strict` is
    set, in which case OperationError is raised.
    """
    value = _clean_timestamp(timestamp_str or "")
    for fmt in TIMESTAMP_FORMATS:
        try:
            dt = datetime.strptime(value, fmt)
        except ValueError:
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())

    if strict:
        raise OperationError(f"Unparsable timestamp: {timestamp_str!r}")
    logger.warning(f"Could not parse timestamp {timestamp_str!r}, using current time")
    return int(time.time())


# --- identifiers ---

def normalize_name(name: str) -> str:
    """Strip the single leading "/" the engine puts on container names."""
    if name and name[0] == "/":
        return name[1:]
    return name or ""


def normalize_image_id(image_id: str) -> str:
    if not image_id:
        return ""
    if image_id.startswith("sha256:"):
        return image_id[len("sha256:"):]
    return image_id


# --- structured mode ---

def container_from_summary(raw: Dict[str, Any]) -> ContainerInfo:
    ports = tuple(
        PortInfo(
            ip=p.get("IP") or "",
            private_port=int(p.get("PrivatePort") or 0),
            public_port=int(p.get("PublicPort") or 0),
            type=p.get("Type") or "tcp",
        )
        for p in raw.get("Ports") or []
    )
    return ContainerInfo(
        id=raw.get("Id") or "",
        names=tuple(normalize_name(n) for n in raw.get("Names") or []),
        image=raw.get("Image") or "",
        state=raw.get("State") or "",
        status=raw.get("Status") or "",
        labels=dict(raw.get("Labels") or {}),
        ports=ports,
        created=int(raw.get("Created") or 0),
    )


def image_from_summary(raw: Dict[str, Any]) -> ImageInfo:
    return ImageInfo(
        id=normalize_image_id(raw.get("Id") or ""),
        repo_tags=tuple(raw.get("RepoTags") or ()),
        size=int(raw.get("Size") or 0),
        created=int(raw.get("Created") or 0),
    )


def _command_line(cmd: Any) -> str:
    if not cmd:
        return ""
    if isinstance(cmd, str):
        return cmd
    return " ".join(cmd)


def _port_mappings(port_map: Optional[Dict[str, Any]]) -> Tuple[PortMapping, ...]:
    # One "port/proto" key can be bound on several host addresses.
    mappings: List[PortMapping] = []
    for container_port, bindings in (port_map or {}).items():
        port_number, _, protocol = container_port.partition("/")
        for binding in bindings or []:
            mappings.append(PortMapping(
                host_ip=binding.get("HostIp") or "",
                host_port=binding.get("HostPort") or "",
                container_port=port_number,
                protocol=protocol or "tcp",
            ))
    return tuple(mappings)


def container_config_from_inspect(raw: Dict[str, Any], container_id: str = "") -> ContainerConfig:
    """Build ContainerConfig from an inspect result.

    Config, HostConfig, State and NetworkSettings are each defaulted on
    their own, so a partial inspect document still yields a full record.
    """
    config = raw.get("Config") or {}
    host_config = raw.get("HostConfig") or {}
    state = raw.get("State") or {}
    network_settings = raw.get("NetworkSettings") or {}
    restart_policy = host_config.get("RestartPolicy") or {}

    volumes = tuple(
        VolumeMapping(
            host_path=m.get("Source") or "",
            container_path=m.get("Destination") or "",
            mode=m.get("Mode") or "",
        )
        for m in raw.get("Mounts") or []
    )

    return ContainerConfig(
        id=container_id or raw.get("Id") or "",
        name=normalize_name(raw.get("Name") or ""),
        image=config.get("Image") or "",
        command=_command_line(config.get("Cmd")),
        created=raw.get("Created") or "",
        status=state.get("Status") or "unknown",
        ports=_port_mappings(network_settings.get("Ports")),
        volumes=volumes,
        env_vars=tuple(config.get("Env") or ()),
        labels=dict(config.get("Labels") or {}),
        network_mode=host_config.get("NetworkMode") or "",
        restart_policy=restart_policy.get("Name") or "no",
    )


# --- text mode ---

def _split_lines(output: str, expected_fields: int) -> List[List[str]]:
    rows = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split(FIELD_SEPARATOR, expected_fields - 1)
        if len(fields) < expected_fields:
            logger.debug(f"Dropping malformed line ({len(fields)} fields): {line!r}")
            continue
        rows.append([f.strip() for f in fields])
    return rows


def parse_image_lines(output: str, strict_timestamps: bool = False) -> List[ImageInfo]:
    """Parse `docker images --format IMAGE_FORMAT` output."""
    images = []
    for fields in _split_lines(output, IMAGE_FIELDS):
        images.append(ImageInfo(
            id=normalize_image_id(fields[0]),
            repo_tags=(fields[1],),
            size=parse_size(fields[2]),
            created=parse_timestamp(fields[3], strict=strict_timestamps),
        ))
    return images


def parse_labels(labels_str: str) -> Dict[str, str]:
    labels: Dict[str, str] = {}
    for item in labels_str.split(","):
        if not item:
            continue
        key, _, value = item.partition("=")
        labels[key.strip()] = value
    return labels


def parse_ports(ports_str: str) -> Tuple[PortInfo, ...]:
    """Parse the `Ports` column, e.g. "0.0.0.0:8080->80/tcp, 443/tcp"."""
    ports = []
    for segment in ports_str.split(","):
        segment = segment.strip()
        if not segment:
            continue
        match = _PORT_RE.match(segment)
        if not match:
            logger.debug(f"Skipping unrecognized port segment: {segment!r}")
            continue
        ports.append(PortInfo(
            ip=match.group("ip") or "",
            private_port=int(match.group("private")),
            public_port=int(match.group("public") or 0),
            type=match.group("proto"),
        ))
    return tuple(ports)


def parse_container_lines(output: str, strict_timestamps: bool = False) -> List[ContainerInfo]:
    """Parse `docker ps -a --no-trunc --format CONTAINER_FORMAT` output."""
    containers = []
    for fields in _split_lines(output, CONTAINER_FIELDS):
        names = tuple(normalize_name(n.strip()) for n in fields[1].split(",") if n.strip())
        containers.append(ContainerInfo(
            id=fields[0],
            names=names,
            image=fields[2],
            state=fields[3],
            status=fields[4],
            ports=parse_ports(fields[5]),
            created=parse_timestamp(fields[6], strict=strict_timestamps),
            labels=parse_labels(fields[7]),
        ))
    return containers
