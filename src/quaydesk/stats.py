"""
Container resource statistics derivation.

Turns raw engine measurements into a ContainerStats sample. Nothing here is
cached: every request recomputes from a fresh engine answer.

Structured mode (stats_from_api):
  The engine's one-shot stats document carries the current cumulative
  counters (cpu_stats) and the previous ones (precpu_stats). CPU% is the
  share of system time used by the container since the previous sample,
  scaled by the number of online CPUs.

Text mode (parse_stats_line):
  One line of `docker stats --no-stream --format STATS_FORMAT` output:
  cpu% | mem usage / limit | mem% | net rx / tx | block read / write
"""

import logging
from typing import Any, Dict, Tuple

from .errors import NotFoundError, OperationError
from .model import ContainerStats
from .normalize import FIELD_SEPARATOR, parse_size

logger = logging.getLogger(__name__)

STATS_FORMAT = "{{.CPUPerc}}|{{.MemUsage}}|{{.MemPerc}}|{{.NetIO}}|{{.BlockIO}}"
STATS_FIELDS = 5


def calculate_cpu_percent(cpu_stats: Dict[str, Any], precpu_stats: Dict[str, Any]) -> float:
    cpu_usage = (cpu_stats.get("cpu_usage") or {}).get("total_usage") or 0
    precpu_usage = (precpu_stats.get("cpu_usage") or {}).get("total_usage") or 0
    cpu_delta = max(0, cpu_usage - precpu_usage)

    system_usage = cpu_stats.get("system_cpu_usage") or 0
    presystem_usage = precpu_stats.get("system_cpu_usage") or 0
    system_delta = max(0, system_usage - presystem_usage)

    online_cpus = cpu_stats.get("online_cpus") or 1

    if system_delta > 0 and cpu_delta > 0:
        return (cpu_delta / system_delta) * online_cpus * 100.0
    return 0.0


def calculate_memory_percent(usage: int, limit: int) -> float:
    if limit > 0:
        return usage / limit * 100.0
    return 0.0


def sum_network_io(networks: Dict[str, Any]) -> Tuple[int, int]:
    rx_bytes = 0
    tx_bytes = 0
    for interface in (networks or {}).values():
        rx_bytes += interface.get("rx_bytes") or 0
        tx_bytes += interface.get("tx_bytes") or 0
    return rx_bytes, tx_bytes


def sum_block_io(blkio_stats: Dict[str, Any]) -> Tuple[int, int]:
    read_bytes = 0
    write_bytes = 0
    # cgroup v1 reports "Read"/"Write", cgroup v2 "read"/"write".
    for entry in (blkio_stats or {}).get("io_service_bytes_recursive") or []:
        op = (entry.get("op") or "").lower()
        if op == "read":
            read_bytes += entry.get("value") or 0
        elif op == "write":
            write_bytes += entry.get("value") or 0
    return read_bytes, write_bytes


def stats_from_api(raw: Dict[str, Any]) -> ContainerStats:
    """Derive a sample from one `client.api.stats(id, stream=False)` document."""
    memory_stats = raw.get("memory_stats") or {}
    memory_usage = memory_stats.get("usage") or 0
    memory_limit = memory_stats.get("limit") or 0
    rx_bytes, tx_bytes = sum_network_io(raw.get("networks"))
    read_bytes, write_bytes = sum_block_io(raw.get("blkio_stats"))

    return ContainerStats(
        cpu_usage_percent=calculate_cpu_percent(
            raw.get("cpu_stats") or {}, raw.get("precpu_stats") or {}
        ),
        memory_usage=memory_usage,
        memory_limit=memory_limit,
        memory_usage_percent=calculate_memory_percent(memory_usage, memory_limit),
        network_rx_bytes=rx_bytes,
        network_tx_bytes=tx_bytes,
        block_read_bytes=read_bytes,
        block_write_bytes=write_bytes,
    )


def _parse_percent(value: str) -> float:
    value = value.strip().rstrip("%").strip()
    if value in ("", "--"):
        return 0.0
    try:
        return float(value)
    except ValueError:
        raise OperationError(f"Invalid percentage in stats output: {value!r}")


def _parse_pair(value: str) -> Tuple[int, int]:
    left, sep, right = value.partition("/")
    if not sep:
        raise OperationError(f"Expected 'a / b' in stats output, got {value!r}")
    return parse_size(left), parse_size(right)


def parse_stats_line(output: str, container_id: str = "") -> ContainerStats:
    """Parse the first line of `docker stats` output.

    Empty output means the engine had nothing to report for the container
    and is raised as NotFoundError rather than returned as a zero sample.
    """
    lines = [line for line in output.splitlines() if line.strip()]
    if not lines:
        raise NotFoundError(f"No stats found for container {container_id}")

    fields = lines[0].split(FIELD_SEPARATOR)
    if len(fields) < STATS_FIELDS:
        raise OperationError(f"Unparsable stats output: {lines[0]!r}")

    memory_usage, memory_limit = _parse_pair(fields[1])
    rx_bytes, tx_bytes = _parse_pair(fields[3])
    read_bytes, write_bytes = _parse_pair(fields[4])

    return ContainerStats(
        cpu_usage_percent=_parse_percent(fields[0]),
        memory_usage=memory_usage,
        memory_limit=memory_limit,
        memory_usage_percent=_parse_percent(fields[2]),
        network_rx_bytes=rx_bytes,
        network_tx_bytes=tx_bytes,
        block_read_bytes=read_bytes,
        block_write_bytes=write_bytes,
    )
