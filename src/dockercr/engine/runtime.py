"""Container runtime adapter: Docker Engine API over the daemon's unix socket.

A fresh httpx.Client is opened per logical operation (DockerRuntime.session())
and closed when it ends. No connection is held across a whole checkpoint or
restore, so attempts never contend for one.

Usage:
    runtime = DockerRuntime(Path("/var/run/docker.sock"))
    with runtime.session() as rt:
        state = rt.inspect("web")
"""

from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

import httpx

from dockercr.contracts import ContainerRuntimeError, ContainerState, RuntimeUnavailableError
from dockercr.core.logging import get_logger

logger = get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Extract the daemon's error text ({"message": ...}) from a response."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and "message" in body:
        return str(body["message"])
    return response.text.strip()


def _parse_state(body: dict[str, Any]) -> ContainerState:
    state = body.get("State") or {}
    config = body.get("Config") or {}
    return ContainerState(
        container_id=body["Id"],
        name=str(body.get("Name", "")).lstrip("/"),
        image=config.get("Image") or body.get("Image", ""),
        running=bool(state.get("Running", False)),
        pid=int(state.get("Pid", 0)),
        status=state.get("Status", "unknown"),
    )


class RuntimeSession:
    """Requests against the daemon over one open connection."""

    def __init__(self, client: httpx.Client, request_timeout: float) -> None:
        self._client = client
        self._request_timeout = request_timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        ok: tuple[int, ...],
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        timeout: float | None = None,
        unbounded: bool = False,
    ) -> httpx.Response:
        if unbounded:
            effective_timeout = None
        else:
            effective_timeout = timeout if timeout is not None else self._request_timeout
        try:
            response = self._client.request(method, path, params=params, json=json, timeout=effective_timeout)
        except httpx.ConnectError as e:
            raise RuntimeUnavailableError(f"cannot reach the container runtime: {e}") from e
        except httpx.TransportError as e:
            raise ContainerRuntimeError(f"{method} {path} failed: {e}") from e

        if response.status_code not in ok:
            message = _error_message(response)
            logger.debug("runtime request rejected", method=method, path=path, status=response.status_code, message=message)
            raise ContainerRuntimeError(f"{method} {path}: {message}", status_code=response.status_code)
        return response

    def ping(self) -> None:
        """Raises RuntimeUnavailableError unless the daemon answers."""
        self._request("GET", "/_ping", ok=(200,))

    def inspect(self, container: str) -> ContainerState | None:
        """Current state of a container, or None if it does not exist."""
        response = self._request("GET", f"/containers/{container}/json", ok=(200, 404))
        if response.status_code == 404:
            return None
        return _parse_state(response.json())

    def stop(self, container: str, grace_seconds: int) -> None:
        # 304: already stopped
        self._request(
            "POST",
            f"/containers/{container}/stop",
            ok=(204, 304),
            params={"t": grace_seconds},
            timeout=self._request_timeout + grace_seconds,
        )

    def kill(self, container: str) -> None:
        # 409: not running any more
        self._request("POST", f"/containers/{container}/kill", ok=(204, 409))

    def remove(self, container: str, *, force: bool = True) -> None:
        self._request("DELETE", f"/containers/{container}", ok=(204, 404), params={"force": str(force).lower()})

    def create(self, image: str, name: str, entrypoint: list[str] | None = None) -> str:
        """Create a container and return its id."""
        body: dict[str, Any] = {"Image": image}
        if entrypoint is not None:
            body["Entrypoint"] = entrypoint
        response = self._request("POST", "/containers/create", ok=(201,), params={"name": name}, json=body)
        container_id = str(response.json()["Id"])
        logger.info("container created", container=name, container_id=container_id, image=image)
        return container_id

    def start(self, container: str) -> None:
        # 304: already started
        self._request("POST", f"/containers/{container}/start", ok=(204, 304))

    def checkpoint(self, container: str, checkpoint_id: str, checkpoint_dir: Path, *, exit_container: bool) -> None:
        """Ask the runtime to checkpoint a container with its own engine integration."""
        self._request(
            "POST",
            f"/containers/{container}/checkpoints",
            ok=(201, 204),
            json={"CheckpointID": checkpoint_id, "CheckpointDir": str(checkpoint_dir), "Exit": exit_container},
            unbounded=True,
        )

    def start_from_checkpoint(self, container: str, checkpoint_id: str, checkpoint_dir: Path) -> None:
        self._request(
            "POST",
            f"/containers/{container}/start",
            ok=(204,),
            params={"checkpoint": checkpoint_id, "checkpoint-dir": str(checkpoint_dir)},
            unbounded=True,
        )


class ContainerRuntime(Protocol):
    """What the orchestrators need from a container runtime."""

    def session(self) -> AbstractContextManager[RuntimeSession]: ...


class DockerRuntime:
    """Opens sessions against the Docker daemon.

    Args:
        socket_path: Daemon unix socket
        api_version: API version prefix, e.g. "v1.41"
        request_timeout: Default per-request timeout in seconds
        transport: Override the unix-socket transport (tests pass
            httpx.MockTransport)
    """

    def __init__(
        self,
        socket_path: Path = Path("/var/run/docker.sock"),
        *,
        api_version: str = "v1.41",
        request_timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._socket_path = socket_path
        self._api_version = api_version
        self._request_timeout = request_timeout
        self._transport = transport

    @contextmanager
    def session(self) -> Iterator[RuntimeSession]:
        transport = self._transport or httpx.HTTPTransport(uds=str(self._socket_path))
        with httpx.Client(transport=transport, base_url=f"http://docker/{self._api_version}") as client:
            yield RuntimeSession(client, self._request_timeout)
