"""
Error taxonomy and recovered results for Docker operations.

Engine failures surface from docker-py (docker.errors.*), from requests
(transport errors) and from subprocess calls in text mode. This module maps
all of them onto a small, stable taxonomy:

  404 response              -> NotFoundError
  403 response              -> PermissionDeniedError
  other API error           -> OperationError ("Server error (code): msg")
  transport/connection text -> DockerConnectionError
  OS/subprocess failure     -> OperationError
  anything else             -> UnknownDockerError

Externally visible operations never raise; they return an OperationResult
built from the mapped error (see commands.docker_safe).
"""

import asyncio
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import docker.errors
import requests.exceptions


class ErrorKind(str, Enum):
    CONNECTION = "ConnectionError"
    OPERATION = "OperationError"
    NOT_FOUND = "NotFound"
    PERMISSION_DENIED = "PermissionDenied"
    UNKNOWN = "Unknown"


_PREFIXES = {
    ErrorKind.CONNECTION: "Connection error",
    ErrorKind.OPERATION: "Operation error",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.PERMISSION_DENIED: "Permission denied",
    ErrorKind.UNKNOWN: "Unknown error",
}


class DockerError(Exception):
    """Base class for all errors reported by the runtime core."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{_PREFIXES[self.kind]}: {self.message}"


class DockerConnectionError(DockerError):
    kind = ErrorKind.CONNECTION


class OperationError(DockerError):
    kind = ErrorKind.OPERATION


class NotFoundError(DockerError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(DockerError):
    kind = ErrorKind.PERMISSION_DENIED


class UnknownDockerError(DockerError):
    kind = ErrorKind.UNKNOWN


def _api_message(exc: docker.errors.APIError) -> str:
    return exc.explanation or str(exc)


def from_exception(exc: BaseException) -> DockerError:
    """Map any exception raised while talking to the engine onto the taxonomy."""
    if isinstance(exc, DockerError):
        return exc

    if isinstance(exc, docker.errors.APIError) and exc.status_code is not None:
        status_code = exc.status_code
        if status_code == 404:
            return NotFoundError(_api_message(exc))
        if status_code == 403:
            return PermissionDeniedError(_api_message(exc))
        return OperationError(f"Server error ({status_code}): {_api_message(exc)}")

    if isinstance(exc, docker.errors.NotFound):
        return NotFoundError(str(exc))

    if isinstance(exc, requests.exceptions.ConnectionError):
        return DockerConnectionError(str(exc))

    if "connection" in str(exc).lower():
        return DockerConnectionError(str(exc))

    if isinstance(exc, subprocess.TimeoutExpired):
        return OperationError(f"Command timed out after {exc.timeout}s")

    if isinstance(exc, asyncio.TimeoutError):
        return OperationError("Operation timed out")

    if isinstance(exc, (OSError, subprocess.SubprocessError)):
        return OperationError(str(exc))

    return UnknownDockerError(str(exc))


@dataclass(frozen=True)
class OperationResult:
    """Success value or error kind + message, as handed to the shell."""

    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, err: DockerError) -> "OperationResult":
        return cls(ok=False, error=err.kind, message=str(err))

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        elif isinstance(value, list):
            value = [v.to_dict() if hasattr(v, "to_dict") else v for v in value]
        return {
            "ok": self.ok,
            "value": value,
            "error": self.error.value if self.error else None,
            "message": self.message,
        }
