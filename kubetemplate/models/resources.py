"""Resource kinds, watch events and the records handed to templates."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ResourceKind(StrEnum):
    """The four Kubernetes resource kinds a template can depend on."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    SERVICE = "Service"
    ENDPOINTS = "Endpoints"


class WatchEventType(StrEnum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchEvent:
    """One change observed by a watch cache.

    ``old`` is only populated for UPDATED events and holds the previous
    snapshot of the same object.
    """

    type: WatchEventType
    obj: dict[str, Any]
    old: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        return object_name(self.obj)


@dataclass(frozen=True)
class Dependency:
    """A learned (namespace, kind, name) reference and the keys read from it."""

    namespace: str
    kind: ResourceKind
    name: str
    keys: tuple[str, ...] = ()


def object_name(obj: dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("name", ""))


def resource_version(obj: dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("resourceVersion", ""))


@dataclass(frozen=True)
class ServicePort:
    name: str
    port: int
    protocol: str = "TCP"
    target_port: int | str | None = None
    node_port: int | None = None


@dataclass(frozen=True)
class ServiceRecord:
    """Template-facing view of a Service."""

    name: str
    namespace: str
    cluster_ip: str = ""
    type: str = ""
    ports: list[ServicePort] = field(default_factory=list)
    selector: dict[str, str] = field(default_factory=dict)
    external_ips: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, obj: dict[str, Any]) -> ServiceRecord:
        metadata = obj.get("metadata", {})
        spec = obj.get("spec") or {}
        return cls(
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
            cluster_ip=str(spec.get("clusterIP", "") or ""),
            type=str(spec.get("type", "") or ""),
            ports=[
                ServicePort(
                    name=str(p.get("name", "") or ""),
                    port=int(p.get("port", 0)),
                    protocol=str(p.get("protocol", "TCP") or "TCP"),
                    target_port=p.get("targetPort"),
                    node_port=p.get("nodePort"),
                )
                for p in spec.get("ports") or []
            ],
            selector=dict(spec.get("selector") or {}),
            external_ips=list(spec.get("externalIPs") or []),
            labels=dict(metadata.get("labels") or {}),
            spec=spec,
        )


@dataclass(frozen=True)
class EndpointAddress:
    ip: str
    hostname: str = ""
    node_name: str = ""


@dataclass(frozen=True)
class EndpointPort:
    name: str
    port: int
    protocol: str = "TCP"


@dataclass(frozen=True)
class EndpointSubset:
    addresses: list[EndpointAddress] = field(default_factory=list)
    not_ready_addresses: list[EndpointAddress] = field(default_factory=list)
    ports: list[EndpointPort] = field(default_factory=list)


@dataclass(frozen=True)
class EndpointSetRecord:
    """Template-facing view of an Endpoints object."""

    name: str
    namespace: str
    subsets: list[EndpointSubset] = field(default_factory=list)

    @property
    def ips(self) -> list[str]:
        """Ready addresses across all subsets, in the order reported."""
        return [addr.ip for subset in self.subsets for addr in subset.addresses]

    @classmethod
    def from_raw(cls, obj: dict[str, Any]) -> EndpointSetRecord:
        metadata = obj.get("metadata", {})
        return cls(
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
            subsets=[_subset_from_raw(s) for s in obj.get("subsets") or []],
        )


def _address_from_raw(raw: dict[str, Any]) -> EndpointAddress:
    return EndpointAddress(
        ip=str(raw.get("ip", "")),
        hostname=str(raw.get("hostname", "") or ""),
        node_name=str(raw.get("nodeName", "") or ""),
    )


def _subset_from_raw(raw: dict[str, Any]) -> EndpointSubset:
    return EndpointSubset(
        addresses=[_address_from_raw(a) for a in raw.get("addresses") or []],
        not_ready_addresses=[_address_from_raw(a) for a in raw.get("notReadyAddresses") or []],
        ports=[
            EndpointPort(
                name=str(p.get("name", "") or ""),
                port=int(p.get("port", 0)),
                protocol=str(p.get("protocol", "TCP") or "TCP"),
            )
            for p in raw.get("ports") or []
        ],
    )
