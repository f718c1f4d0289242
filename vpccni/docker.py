"""Discovery of running pod sandbox containers through the Docker Engine API."""

from __future__ import annotations

import http.client
import json
import logging
import os
import socket
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

DEFAULT_DOCKER_HOST = "unix:///var/run/docker.sock"
POD_UID_LABEL = "io.kubernetes.pod.uid"
CONTAINER_TYPE_LABEL = "io.kubernetes.docker.type"
SANDBOX_TYPE = "podsandbox"


@dataclass
class Container:
    """A container as listed by the Docker Engine."""

    id: str
    names: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    state: str = ""
    status: str = ""

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Container":
        """Build a container from one entry of the engine's container list."""
        return cls(
            id=data.get("Id") or "",
            names=list(data.get("Names") or []),
            labels=dict(data.get("Labels") or {}),
            state=data.get("State") or "",
            status=data.get("Status") or "",
        )

    @property
    def name(self) -> str:
        return self.names[0] if self.names else ""


@dataclass
class ContainerInfo:
    """A running pod sandbox container."""

    id: str
    name: str
    k8s_uid: str


class ConflictError(RuntimeError):
    """Two running sandbox containers claim the same pod and name."""

    def __init__(self, message: str = "conflict docker runtime info") -> None:
        super().__init__(message)


def running_pod_containers(containers: Iterable[Container]) -> dict[str, ContainerInfo]:
    """Map pod UIDs to their running sandbox containers.

    Containers that are not running pod sandboxes are skipped. When a pod
    has several sandboxes with different names the first wins; a second
    sandbox with the same name raises ConflictError.
    """
    infos: dict[str, ContainerInfo] = {}
    for container in containers:
        log.info(
            "Discovered running docker: %s %s %s State: %s Status: %s",
            container.id,
            container.name,
            container.labels.get(POD_UID_LABEL, ""),
            container.state,
            container.status,
        )
        container_type = container.labels.get(CONTAINER_TYPE_LABEL)
        if container_type is None:
            log.info("skip non pause container")
            continue
        if container_type != SANDBOX_TYPE:
            log.info("skip container type: %s", container_type)
            continue
        if container.state != "running":
            log.info("skip container who is not running")
            continue

        uid = container.labels.get(POD_UID_LABEL, "")
        known = infos.get(uid)
        if known is None:
            infos[uid] = ContainerInfo(id=container.id, name=container.name, k8s_uid=uid)
        elif container.name != known.name:
            log.info(
                "same uid matched by container:%s, %s container id %s",
                known.name,
                container.name,
                container.id,
            )
        else:
            log.error("Conflict container id %s for container %s", container.id, known.name)
            raise ConflictError()
    return infos


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, path: str, timeout: float) -> None:
        super().__init__("localhost", timeout=timeout)
        self._socket_path = path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        sock.connect(self._socket_path)
        self.sock = sock


class DockerClient:
    """Lists running pod containers from the local Docker Engine.

    The engine address comes from ``host``, else ``DOCKER_HOST``, else the
    default unix socket. ``list_containers`` replaces the engine query.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        timeout: float = 30.0,
        list_containers: Optional[Callable[[], Iterable[Container]]] = None,
    ) -> None:
        self.host = host or os.environ.get("DOCKER_HOST") or DEFAULT_DOCKER_HOST
        self.timeout = timeout
        self._list = list_containers or self._list_from_engine

    def _connection(self) -> http.client.HTTPConnection:
        parts = urlsplit(self.host)
        if parts.scheme == "unix":
            return _UnixHTTPConnection(parts.path, self.timeout)
        if parts.scheme in ("tcp", "http"):
            return http.client.HTTPConnection(parts.hostname or "localhost", parts.port, timeout=self.timeout)
        raise ValueError(f"unsupported docker host: {self.host}")

    def _list_from_engine(self) -> list[Container]:
        conn = self._connection()
        try:
            conn.request("GET", "/containers/json")
            response = conn.getresponse()
            body = response.read()
        finally:
            conn.close()
        if response.status != 200:
            raise RuntimeError(
                f"docker engine returned {response.status}: {body.decode('utf-8', 'replace').strip()}"
            )
        return [Container.from_api(item) for item in json.loads(body)]

    def get_running_containers(self) -> dict[str, ContainerInfo]:
        """Return the running pod sandbox containers keyed by pod UID."""
        return running_pod_containers(self._list())