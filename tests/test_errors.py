import asyncio
import subprocess
from unittest.mock import MagicMock

import docker.errors
import requests.exceptions

from quaydesk.errors import (
    DockerConnectionError,
    ErrorKind,
    NotFoundError,
    OperationError,
    OperationResult,
    PermissionDeniedError,
    UnknownDockerError,
    from_exception,
)
from quaydesk.model import ContainerStats


def _api_error(status_code, explanation=None):
    response = MagicMock(status_code=status_code) if status_code is not None else None
    return docker.errors.APIError("request failed", response=response, explanation=explanation)


def test_api_status_codes():
    assert isinstance(from_exception(_api_error(404, "No such image")), NotFoundError)
    assert isinstance(from_exception(_api_error(403, "denied")), PermissionDeniedError)

    err = from_exception(_api_error(409, "conflict"))
    assert isinstance(err, OperationError)
    assert err.message == "Server error (409): conflict"


def test_image_not_found_without_response():
    assert isinstance(from_exception(docker.errors.ImageNotFound("missing")), NotFoundError)


def test_transport_errors_are_connection_errors():
    assert isinstance(from_exception(requests.exceptions.ConnectionError("refused")), DockerConnectionError)
    assert isinstance(from_exception(RuntimeError("Connection aborted")), DockerConnectionError)


def test_timeouts_and_os_errors():
    err = from_exception(subprocess.TimeoutExpired(cmd="docker", timeout=5))
    assert isinstance(err, OperationError)
    assert err.message == "Command timed out after 5s"
    assert isinstance(from_exception(asyncio.TimeoutError()), OperationError)
    assert isinstance(from_exception(FileNotFoundError("docker")), OperationError)


def test_unknown_and_passthrough():
    assert isinstance(from_exception(ValueError("odd")), UnknownDockerError)
    original = NotFoundError("x")
    assert from_exception(original) is original


def test_error_strings():
    assert str(DockerConnectionError("refused")) == "Connection error: refused"
    assert str(OperationError("x")) == "Operation error: x"
    assert str(NotFoundError("x")) == "Not found: x"
    assert str(PermissionDeniedError("x")) == "Permission denied: x"
    assert str(UnknownDockerError("x")) == "Unknown error: x"


def test_operation_result_to_dict():
    ok = OperationResult.success([ContainerStats(cpu_usage_percent=1.5)])
    as_dict = ok.to_dict()
    assert as_dict["ok"] is True
    assert as_dict["error"] is None
    assert as_dict["value"][0]["cpu_usage_percent"] == 1.5

    failed = OperationResult.failure(NotFoundError("No such container: c1"))
    assert failed.to_dict() == {
        "ok": False,
        "value": None,
        "error": ErrorKind.NOT_FOUND.value,
        "message": "Not found: No such container: c1",
    }
