import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from vpccni.docker import (
    CONTAINER_TYPE_LABEL,
    POD_UID_LABEL,
    SANDBOX_TYPE,
    ConflictError,
    Container,
    ContainerInfo,
    DockerClient,
    running_pod_containers,
)


def sandbox(cid, name, uid, state="running"):
    return Container(
        id=cid,
        names=[name],
        labels={CONTAINER_TYPE_LABEL: SANDBOX_TYPE, POD_UID_LABEL: uid},
        state=state,
    )


def test_running_sandbox_is_reported():
    result = running_pod_containers([sandbox("c1", "/pod-a", "uid-a")])
    assert result == {"uid-a": ContainerInfo(id="c1", name="/pod-a", k8s_uid="uid-a")}


def test_non_sandbox_and_stopped_containers_are_skipped():
    containers = [
        Container(id="c1", names=["/plain"], labels={POD_UID_LABEL: "uid-a"}, state="running"),
        Container(
            id="c2",
            names=["/app"],
            labels={CONTAINER_TYPE_LABEL: "container", POD_UID_LABEL: "uid-b"},
            state="running",
        ),
        sandbox("c3", "/pod-c", "uid-c", state="exited"),
    ]
    assert running_pod_containers(containers) == {}


def test_same_uid_different_name_keeps_first():
    result = running_pod_containers(
        [sandbox("c1", "/pod-a", "uid-a"), sandbox("c2", "/pod-a-other", "uid-a")]
    )
    assert list(result) == ["uid-a"]
    assert result["uid-a"].id == "c1"


def test_same_uid_same_name_conflicts():
    with pytest.raises(ConflictError):
        running_pod_containers([sandbox("c1", "/pod-a", "uid-a"), sandbox("c2", "/pod-a", "uid-a")])


def test_client_uses_injected_listing():
    client = DockerClient(list_containers=lambda: [sandbox("c1", "/pod-a", "uid-a")])
    assert client.get_running_containers()["uid-a"].name == "/pod-a"


def test_container_from_api():
    data = {
        "Id": "c1",
        "Names": ["/pod-a"],
        "Labels": {POD_UID_LABEL: "uid-a"},
        "State": "running",
        "Status": "Up",
    }
    container = Container.from_api(data)
    assert container == Container(
        id="c1", names=["/pod-a"], labels={POD_UID_LABEL: "uid-a"}, state="running", status="Up"
    )


def test_unsupported_host_scheme():
    client = DockerClient(host="ftp://localhost")
    with pytest.raises(ValueError):
        client.get_running_containers()


@pytest.fixture
def engine():
    listing = [
        {
            "Id": "c1",
            "Names": ["/pod-a"],
            "Labels": {CONTAINER_TYPE_LABEL: SANDBOX_TYPE, POD_UID_LABEL: "uid-a"},
            "State": "running",
            "Status": "Up",
        }
    ]
    paths = []

    class EngineHandler(BaseHTTPRequestHandler):
        def do_GET(self):
            paths.append(self.path)
            body = json.dumps(listing).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), EngineHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"tcp://127.0.0.1:{server.server_address[1]}", paths
    finally:
        server.shutdown()
        server.server_close()


def test_client_queries_engine_over_tcp(engine):
    host, paths = engine
    result = DockerClient(host=host).get_running_containers()
    assert result == {"uid-a": ContainerInfo(id="c1", name="/pod-a", k8s_uid="uid-a")}
    assert paths == ["/containers/json"]