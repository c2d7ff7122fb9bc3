"""Unit tests for the per-kind monitors.

Covers interest registration, event filtering, per-kind materiality and the
kind registry.  Monitors are driven directly through ``handle()``; no watch
loop runs.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from kubetemplate.cluster.watch_cache import WatchCache
from kubetemplate.engine.signal import ChangeSignal
from kubetemplate.models.resources import ResourceKind, WatchEvent, WatchEventType
from kubetemplate.monitors import (
    ConfigMapMonitor,
    EndpointsMonitor,
    SecretMonitor,
    ServiceMonitor,
    get_monitor_type,
)

from ..conftest import (
    FakeResourceClient,
    encode,
    make_config_map,
    make_endpoints,
    make_secret,
    make_service,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _monitor(cls: type, kind: ResourceKind) -> Any:
    cache = WatchCache(FakeResourceClient(), kind, "ns1")
    return cls(cache, ChangeSignal())


def _updated(old: dict[str, Any], new: dict[str, Any]) -> WatchEvent:
    return WatchEvent(WatchEventType.UPDATED, new, old)


# ---------------------------------------------------------------------------
# Interest sets
# ---------------------------------------------------------------------------


class TestInterest:
    def test_keyed_register_deduplicates(self) -> None:
        monitor = _monitor(ConfigMapMonitor, ResourceKind.CONFIG_MAP)
        assert monitor.register("app-cfg", "LOG_LEVEL") is True
        assert monitor.register("app-cfg", "LOG_LEVEL") is False
        assert monitor.register("app-cfg", "PORT") is True
        assert monitor.keys("app-cfg") == ["LOG_LEVEL", "PORT"]

    def test_named_register_deduplicates(self) -> None:
        monitor = _monitor(ServiceMonitor, ResourceKind.SERVICE)
        assert monitor.register("api") is True
        assert monitor.register("api") is False
        assert monitor.interested("api")
        assert not monitor.interested("db")

    def test_dependencies_preserve_registration_order(self) -> None:
        monitor = _monitor(SecretMonitor, ResourceKind.SECRET)
        monitor.register("b", "k2")
        monitor.register("a", "k1")
        monitor.register("b", "k1")
        deps = monitor.dependencies()
        assert [(d.name, d.keys) for d in deps] == [("b", ("k2", "k1")), ("a", ("k1",))]
        assert all(d.namespace == "ns1" and d.kind is ResourceKind.SECRET for d in deps)


# ---------------------------------------------------------------------------
# Filtering and added/deleted events
# ---------------------------------------------------------------------------


class TestFiltering:
    def test_uninteresting_name_never_signals(self) -> None:
        monitor = _monitor(ConfigMapMonitor, ResourceKind.CONFIG_MAP)
        monitor.register("app-cfg", "K")
        event = WatchEvent(WatchEventType.ADDED, make_config_map("other", data={"K": "v"}))
        assert monitor.handle(event) is False
        assert not monitor.signal.pending

    @pytest.mark.parametrize("event_type", [WatchEventType.ADDED, WatchEventType.DELETED])
    def test_added_and_deleted_are_material(self, event_type: WatchEventType) -> None:
        monitor = _monitor(EndpointsMonitor, ResourceKind.ENDPOINTS)
        monitor.register("api")
        assert monitor.handle(WatchEvent(event_type, make_endpoints("api", addresses=["10.0.0.1"]))) is True
        assert monitor.signal.pending

    def test_repeated_changes_coalesce(self) -> None:
        monitor = _monitor(ServiceMonitor, ResourceKind.SERVICE)
        monitor.register("api")
        for _ in range(3):
            assert monitor.handle(WatchEvent(WatchEventType.ADDED, make_service("api"))) is True
        monitor.signal.clear()
        assert not monitor.signal.pending

    def test_successive_updates_each_signal(self) -> None:
        monitor = _monitor(ConfigMapMonitor, ResourceKind.CONFIG_MAP)
        monitor.register("app-cfg", "K")
        versions = [make_config_map("app-cfg", data={"K": str(i)}) for i in range(4)]
        for old, new in zip(versions, versions[1:], strict=False):
            assert monitor.handle(_updated(old, new)) is True
            assert monitor.signal.pending
            monitor.signal.clear()


# ---------------------------------------------------------------------------
# ConfigMap
# ---------------------------------------------------------------------------


class TestConfigMapMateriality:
    def setup_method(self) -> None:
        self.monitor = _monitor(ConfigMapMonitor, ResourceKind.CONFIG_MAP)
        self.monitor.register("app-cfg", "K")

    def test_watched_key_changed(self) -> None:
        old = make_config_map("app-cfg", data={"K": "a", "K2": "x"})
        new = make_config_map("app-cfg", data={"K": "b", "K2": "x"})
        assert self.monitor.handle(_updated(old, new)) is True

    def test_other_key_changed(self) -> None:
        old = make_config_map("app-cfg", data={"K": "a", "K2": "x"})
        new = make_config_map("app-cfg", data={"K": "a", "K2": "y"})
        assert self.monitor.handle(_updated(old, new)) is False
        assert not self.monitor.signal.pending

    def test_watched_key_removed(self) -> None:
        old = make_config_map("app-cfg", data={"K": "a"})
        new = make_config_map("app-cfg", data={})
        assert self.monitor.handle(_updated(old, new)) is True

    def test_watched_key_added(self) -> None:
        old = make_config_map("app-cfg", data={})
        new = make_config_map("app-cfg", data={"K": "a"})
        assert self.monitor.handle(_updated(old, new)) is True

    def test_metadata_only_change(self) -> None:
        old = make_config_map("app-cfg", data={"K": "a"})
        new = copy.deepcopy(old)
        new["metadata"]["labels"] = {"team": "infra"}
        assert self.monitor.handle(_updated(old, new)) is False


# ---------------------------------------------------------------------------
# Secret
# ---------------------------------------------------------------------------


class TestSecretMateriality:
    def setup_method(self) -> None:
        self.monitor = _monitor(SecretMonitor, ResourceKind.SECRET)
        self.monitor.register("creds", "password")

    def test_decoded_value_changed(self) -> None:
        old = make_secret("creds", data={"password": "hunter2"})
        new = make_secret("creds", data={"password": "hunter3"})
        assert self.monitor.handle(_updated(old, new)) is True

    def test_same_decoded_value(self) -> None:
        old = make_secret("creds", data={"password": "hunter2", "user": "a"})
        new = make_secret("creds", data={"password": "hunter2", "user": "b"})
        assert self.monitor.handle(_updated(old, new)) is False

    def test_undecodable_values_compared_raw(self) -> None:
        old = make_secret("creds", raw_data={"password": "not base64!"})
        same = make_secret("creds", raw_data={"password": "not base64!"})
        changed = make_secret("creds", raw_data={"password": "still not base64!"})
        assert self.monitor.handle(_updated(old, same)) is False
        assert self.monitor.handle(_updated(old, changed)) is True

    def test_binary_values(self) -> None:
        old = make_secret("creds", raw_data={"password": encode(b"\x00\xff")})
        new = make_secret("creds", raw_data={"password": encode(b"\x00\xfe")})
        assert self.monitor.handle(_updated(old, new)) is True


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestServiceMateriality:
    def setup_method(self) -> None:
        self.monitor = _monitor(ServiceMonitor, ResourceKind.SERVICE)
        self.monitor.register("api")

    def test_spec_change(self) -> None:
        old = make_service("api", cluster_ip="10.96.0.10")
        new = make_service("api", cluster_ip="10.96.0.11")
        assert self.monitor.handle(_updated(old, new)) is True

    def test_label_change_is_not_material(self) -> None:
        old = make_service("api")
        new = make_service("api", labels={"tier": "web"})
        assert self.monitor.handle(_updated(old, new)) is False

    def test_spec_key_order_is_ignored(self) -> None:
        old = make_service("api")
        new = copy.deepcopy(old)
        new["spec"] = dict(reversed(list(old["spec"].items())))
        assert self.monitor.handle(_updated(old, new)) is False


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestEndpointsMateriality:
    def setup_method(self) -> None:
        self.monitor = _monitor(EndpointsMonitor, ResourceKind.ENDPOINTS)
        self.monitor.register("api")

    def test_address_reorder_is_not_material(self) -> None:
        old = make_endpoints("api", addresses=["10.0.0.1", "10.0.0.2"])
        new = make_endpoints("api", addresses=["10.0.0.2", "10.0.0.1"])
        assert self.monitor.handle(_updated(old, new)) is False

    def test_address_added(self) -> None:
        old = make_endpoints("api", addresses=["10.0.0.1"])
        new = make_endpoints("api", addresses=["10.0.0.1", "10.0.0.2"])
        assert self.monitor.handle(_updated(old, new)) is True

    def test_address_removed(self) -> None:
        old = make_endpoints("api", addresses=["10.0.0.1", "10.0.0.2"])
        new = make_endpoints("api", addresses=["10.0.0.2"])
        assert self.monitor.handle(_updated(old, new)) is True

    def test_port_changed(self) -> None:
        old = make_endpoints("api", addresses=["10.0.0.1"], ports=[("http", 8080)])
        new = make_endpoints("api", addresses=["10.0.0.1"], ports=[("http", 8081)])
        assert self.monitor.handle(_updated(old, new)) is True


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    @pytest.mark.parametrize(
        ("kind", "expected"),
        [
            ("ConfigMap", ConfigMapMonitor),
            ("configmap", ConfigMapMonitor),
            ("SECRET", SecretMonitor),
            ("Service", ServiceMonitor),
            (ResourceKind.ENDPOINTS, EndpointsMonitor),
        ],
    )
    def test_lookup_is_case_insensitive(self, kind: str, expected: type) -> None:
        assert get_monitor_type(kind) is expected

    def test_unknown_kind(self) -> None:
        with pytest.raises(KeyError, match="Pod"):
            get_monitor_type("Pod")
