"""Shared fixtures for kubetemplate tests.

Provides an in-memory cluster that implements the ResourceClient list/watch
contract, a canned network discoverer, and factories for raw ConfigMap,
Secret, Service and Endpoints objects, so the engine can be exercised end to
end without a real Kubernetes API server.
"""

from __future__ import annotations

import asyncio
import base64
import copy
from collections import Counter
from collections.abc import AsyncIterator
from typing import Any

import pytest

from kubetemplate.engine import Engine
from kubetemplate.errors import NetworkDiscoveryError, ResourceExpiredError
from kubetemplate.models.resources import ResourceKind
from kubetemplate.observability.logging import setup_logging

# ---------------------------------------------------------------------------
# Raw object factories
# ---------------------------------------------------------------------------


def make_config_map(name: str, namespace: str = "ns1", data: dict[str, str] | None = None) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace},
        "data": dict(data or {}),
    }


def encode(value: str | bytes) -> str:
    raw = value.encode() if isinstance(value, str) else value
    return base64.b64encode(raw).decode()


def make_secret(
    name: str,
    namespace: str = "ns1",
    data: dict[str, str | bytes] | None = None,
    raw_data: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Secret with *data* base64-encoded, or *raw_data* stored verbatim."""
    encoded = {key: encode(value) for key, value in (data or {}).items()}
    encoded.update(raw_data or {})
    return {
        "metadata": {"name": name, "namespace": namespace},
        "type": "Opaque",
        "data": encoded,
    }


def make_service(
    name: str,
    namespace: str = "ns1",
    cluster_ip: str = "10.96.0.10",
    ports: list[tuple[str, int]] | None = None,
    labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels or {})},
        "spec": {
            "type": "ClusterIP",
            "clusterIP": cluster_ip,
            "selector": {"app": name},
            "ports": [
                {"name": port_name, "port": port, "protocol": "TCP", "targetPort": port}
                for port_name, port in (ports or [("http", 80)])
            ],
        },
    }


def make_endpoints(
    name: str,
    namespace: str = "ns1",
    addresses: list[str] | None = None,
    ports: list[tuple[str, int]] | None = None,
) -> dict[str, Any]:
    return {
        "metadata": {"name": name, "namespace": namespace},
        "subsets": [
            {
                "addresses": [{"ip": ip, "nodeName": "node-1"} for ip in (addresses or [])],
                "ports": [
                    {"name": port_name, "port": port, "protocol": "TCP"}
                    for port_name, port in (ports or [("http", 8080)])
                ],
            }
        ],
    }


# ---------------------------------------------------------------------------
# In-memory cluster
# ---------------------------------------------------------------------------


class FakeResourceClient:
    """ResourceClient over an in-memory object store with a replayable history.

    Every mutation gets a fresh, monotonically increasing resourceVersion.  A
    watch replays history newer than the version it was started from and then
    follows live changes until *timeout_seconds* elapses, mirroring how the
    API server ends a watch request.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[ResourceKind, str], dict[str, dict[str, Any]]] = {}
        self._history: list[tuple[int, ResourceKind, str, str, dict[str, Any]]] = []
        self._rv = 0
        self._watchers: dict[tuple[ResourceKind, str], list[asyncio.Queue[Any]]] = {}
        self._pending_watch_errors: dict[tuple[ResourceKind, str], BaseException] = {}
        self._list_errors: dict[tuple[ResourceKind, str], Exception] = {}
        self.list_calls: Counter[tuple[ResourceKind, str]] = Counter()
        self.watch_calls: Counter[tuple[ResourceKind, str]] = Counter()
        self.closed = False

    # --- mutation ------------------------------------------------------

    def apply(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Create or replace *obj*; returns the stored copy."""
        obj = copy.deepcopy(obj)
        namespace = obj["metadata"]["namespace"]
        name = obj["metadata"]["name"]
        store = self._objects.setdefault((kind, namespace), {})
        event_type = "MODIFIED" if name in store else "ADDED"
        self._rv += 1
        obj["metadata"]["resourceVersion"] = str(self._rv)
        store[name] = obj
        self._record(kind, namespace, event_type, obj)
        return obj

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        obj = self._objects.get((kind, namespace), {}).pop(name)
        self._rv += 1
        obj["metadata"]["resourceVersion"] = str(self._rv)
        self._record(kind, namespace, "DELETED", obj)

    def _record(self, kind: ResourceKind, namespace: str, event_type: str, obj: dict[str, Any]) -> None:
        self._history.append((self._rv, kind, namespace, event_type, copy.deepcopy(obj)))
        for queue in self._watchers.get((kind, namespace), []):
            queue.put_nowait((self._rv, event_type, copy.deepcopy(obj)))

    # --- fault injection ---------------------------------------------------

    def fail_watch(self, kind: ResourceKind, namespace: str, exc: BaseException) -> None:
        """Make the current (or next) watch for (kind, namespace) raise *exc*."""
        queues = self._watchers.get((kind, namespace), [])
        if queues:
            for queue in queues:
                queue.put_nowait(exc)
        else:
            self._pending_watch_errors[(kind, namespace)] = exc

    def expire(self, kind: ResourceKind, namespace: str) -> None:
        self.fail_watch(kind, namespace, ResourceExpiredError("too old resource version"))

    def fail_list(self, kind: ResourceKind, namespace: str, exc: Exception) -> None:
        self._list_errors[(kind, namespace)] = exc

    def watching(self, kind: ResourceKind, namespace: str) -> bool:
        return bool(self._watchers.get((kind, namespace)))

    # --- ResourceClient ------------------------------------------------------

    async def list(self, kind: ResourceKind, namespace: str) -> tuple[list[dict[str, Any]], str]:
        key = (ResourceKind(kind), namespace)
        self.list_calls[key] += 1
        if key in self._list_errors:
            raise self._list_errors[key]
        items = [copy.deepcopy(obj) for obj in self._objects.get(key, {}).values()]
        return items, str(self._rv)

    async def watch(
        self,
        kind: ResourceKind,
        namespace: str,
        resource_version: str,
        timeout_seconds: int,
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        key = (ResourceKind(kind), namespace)
        self.watch_calls[key] += 1
        if key in self._pending_watch_errors:
            raise self._pending_watch_errors.pop(key)

        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._watchers.setdefault(key, []).append(queue)
        seen = int(resource_version or 0)
        try:
            for rv, h_kind, h_ns, event_type, obj in list(self._history):
                if (h_kind, h_ns) == key and rv > seen:
                    seen = rv
                    yield event_type, copy.deepcopy(obj)

            loop = asyncio.get_running_loop()
            deadline = loop.time() + timeout_seconds
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=remaining)
                except TimeoutError:
                    return
                if isinstance(item, BaseException):
                    raise item
                rv, event_type, obj = item
                if rv > seen:
                    seen = rv
                    yield event_type, obj
        finally:
            self._watchers[key].remove(queue)

    async def close(self) -> None:
        self.closed = True


class FakeDiscoverer:
    """Discoverer returning fixed values; a value of None raises NetworkDiscoveryError."""

    def __init__(
        self,
        hostname: str | None = "node-a",
        private_ipv4: str | None = "10.0.0.5",
        public_ipv4: str | None = "203.0.113.7",
        public_ipv6: str | None = "2001:db8::7",
    ) -> None:
        self._values = {
            "hostname": hostname,
            "privatev4": private_ipv4,
            "publicv4": public_ipv4,
            "publicv6": public_ipv6,
        }

    def _get(self, kind: str) -> str:
        value = self._values[kind]
        if value is None:
            raise NetworkDiscoveryError(kind, "unavailable in test")
        return value

    async def hostname(self) -> str:
        return self._get("hostname")

    async def private_ipv4(self) -> str:
        return self._get("privatev4")

    async def public_ipv4(self) -> str:
        return self._get("publicv4")

    async def public_ipv6(self) -> str:
        return self._get("publicv6")


async def wait_until(predicate: Any, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll *predicate* until it is truthy or fail after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met within timeout")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _quiet_logging() -> None:
    """JSON logs to stderr at warning, so stdout stays clean for CLI output."""
    setup_logging("warning")


@pytest.fixture
def cluster() -> FakeResourceClient:
    return FakeResourceClient()


@pytest.fixture
def discoverer() -> FakeDiscoverer:
    return FakeDiscoverer()


@pytest.fixture
async def engine(cluster: FakeResourceClient, discoverer: FakeDiscoverer) -> AsyncIterator[Engine]:
    eng = Engine(cluster, discoverer, resync_seconds=30, sync_timeout_seconds=2.0)
    yield eng
    await eng.aclose()
