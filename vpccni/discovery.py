"""Tracking of the pods that run on this node and of the CNI daemon pods."""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Hashable, Mapping, MutableMapping, Optional

log = logging.getLogger(__name__)

CNI_POD_NAME = "aws-node"
NAMESPACE_SYSTEM = "kube-system"
CNI_POD_KEY_PREFIX = f"{NAMESPACE_SYSTEM}/{CNI_POD_NAME}"
ENV_MY_NODE_NAME = "MY_NODE_NAME"
MAX_RETRIES = 5


@dataclass
class K8SPodInfo:
    """What is known about a pod running on this node."""

    name: str
    namespace: str
    container: str = ""
    ip: str = ""
    uid: str = ""


@dataclass
class Pod:
    """A pod as seen through the API server."""

    name: str
    namespace: str = "default"
    uid: str = ""
    node_name: str = ""
    host_network: bool = False
    pod_ip: str = ""

    @property
    def key(self) -> str:
        """The ``namespace/name`` key the pod is stored under."""
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


class InformerNotSyncedError(RuntimeError):
    """The pod cache has not yet synced with the API server."""

    def __init__(self, message: str = "discovery: informer not synced") -> None:
        super().__init__(message)


class WorkQueue:
    """A de-duplicating work queue with per-key exponential retry delays.

    A key is handed to at most one worker at a time; adding a key that is
    being processed queues it again once the worker calls ``done``.
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: Hashable) -> None:
        """Queue ``key`` unless it is already waiting or the queue is shut down."""
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self) -> Optional[Hashable]:
        """Block until a key is available; return None once shut down and drained."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: Hashable) -> None:
        """Mark ``key`` as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def forget(self, key: Hashable) -> None:
        """Clear the retry history of ``key``."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        """Return how many times ``key`` was re-queued with a delay."""
        with self._cond:
            return self._failures.get(key, 0)

    def _when(self, key: Hashable) -> float:
        with self._cond:
            exponent = self._failures.get(key, 0)
            self._failures[key] = exponent + 1
        try:
            delay = self.base_delay * (2**exponent)
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def add_rate_limited(self, key: Hashable) -> None:
        """Queue ``key`` again after a delay that doubles with each retry."""
        delay = self._when(key)
        with self._cond:
            if self._shutting_down:
                return
        if delay <= 0:
            self.add(key)
            return
        timer = threading.Timer(delay, self.add, (key,))
        timer.daemon = True
        timer.start()

    def shut_down(self) -> None:
        """Stop accepting keys and wake every waiting worker."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()


class Controller:
    """Keeps the worker pods of this node and the CNI pods of the cluster.

    ``indexer`` maps pod keys to the current pod objects; keys that have
    changed are fed through ``queue`` and applied by ``process_next_item``.
    """

    def __init__(
        self,
        node_name: Optional[str] = None,
        indexer: Optional[Mapping[str, Any]] = None,
        queue: Optional[WorkQueue] = None,
    ) -> None:
        self.my_node_name = node_name if node_name is not None else os.environ.get(ENV_MY_NODE_NAME, "")
        self.indexer: Mapping[str, Any] = indexer if indexer is not None else {}
        self.queue = queue if queue is not None else WorkQueue()
        self.worker_pods: MutableMapping[str, K8SPodInfo] = {}
        self.cni_pods: MutableMapping[str, str] = {}
        self._worker_pods_lock = threading.Lock()
        self._cni_pods_lock = threading.Lock()
        self.synced = False

    def mark_synced(self) -> None:
        """Record that the pod cache has synced with the API server."""
        log.info("Synced successfully with APIServer")
        self.synced = True

    def get_cni_pods(self) -> list[str]:
        """Return the names of the known CNI pods."""
        with self._cni_pods_lock:
            pods = list(self.cni_pods)
        log.info("GetCNIPods discovered %s", pods)
        return pods

    def k8s_get_local_pod_ips(self) -> list[K8SPodInfo]:
        """Return the pods running on this node.

        Raises InformerNotSyncedError before the cache has synced.
        """
        if not self.synced:
            log.info("GetLocalPods: informer not synced yet")
            raise InformerNotSyncedError()
        with self._worker_pods_lock:
            pods = list(self.worker_pods.values())
        for pod in pods:
            log.info(
                "K8SGetLocalPodIPs discovered local Pods: %s %s %s %s",
                pod.name,
                pod.namespace,
                pod.ip,
                pod.uid,
            )
        return pods

    def handle_pod_update(self, key: str) -> None:
        """Bring the caches in line with the current state of pod ``key``.

        Raises TypeError when the stored object is not a pod.
        """
        obj = self.indexer.get(key)
        if obj is None:
            log.info("Pods deleted on my node: %s", key)
            with self._worker_pods_lock:
                self.worker_pods.pop(key, None)
                if key.startswith(CNI_POD_KEY_PREFIX):
                    with self._cni_pods_lock:
                        self.cni_pods.pop(key, None)
            return

        if not isinstance(obj, Pod):
            log.error("updated object received was not a pod: %r", obj)
            raise TypeError("received a non-pod object update")

        if self.my_node_name == obj.node_name and not obj.host_network:
            info = K8SPodInfo(name=obj.name, namespace=obj.namespace, uid=obj.uid, ip=obj.pod_ip)
            with self._worker_pods_lock:
                self.worker_pods[key] = info
            log.info(
                "Add/Update for Pod %s on my node, namespace = %s, IP = %s",
                obj.name,
                info.namespace,
                info.ip,
            )
        elif key.startswith(CNI_POD_KEY_PREFIX):
            log.info("Add/Update for CNI pod %s", obj.name)
            with self._cni_pods_lock:
                self.cni_pods[obj.name] = obj.name

    def _handle_err(self, err: Optional[BaseException], key: str) -> None:
        if err is None:
            self.queue.forget(key)
            return
        if self.queue.num_requeues(key) < MAX_RETRIES:
            log.info("Error syncing pod %s: %s", key, err)
            self.queue.add_rate_limited(key)
            return
        self.queue.forget(key)
        log.info("Dropping pod %r out of the queue: %s", key, err)

    def process_next_item(self) -> bool:
        """Apply the next queued key; return False once the queue is shut down."""
        key = self.queue.get()
        if key is None:
            return False
        try:
            err: Optional[BaseException] = None
            try:
                self.handle_pod_update(key)
            except Exception as exc:
                err = exc
            self._handle_err(err, key)
        finally:
            self.queue.done(key)
        return True