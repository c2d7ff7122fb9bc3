"""Template data accessors.

A ``DataProvider`` is created for every learn or render and bound into the
template as a set of global functions (``ConfigMap``, ``Secret``, ...).

In learning mode each accessor first registers the resource with the
monitor of its namespace, creating the namespace on demand, and then reads
whatever the cache already holds.  Missing data is not an error while
learning: the accessor logs it and returns an empty value so the rest of the
template still runs and registers its own dependencies.

In rendering mode the accessors only read.  Touching a namespace that was
never learned raises ``NamespaceNotMonitoredError``.
"""

from __future__ import annotations

import functools
import os
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar, cast

import structlog

from kubetemplate.config import resolve_namespace
from kubetemplate.errors import (
    DataUnavailableError,
    NamespaceNotMonitoredError,
    ResourceNotFoundError,
    SecretDecodeError,
    UnrecognizedNetworkKindError,
)
from kubetemplate.models.resources import EndpointSetRecord, ResourceKind, ServiceRecord
from kubetemplate.monitors import KeyedMonitor, NamedMonitor, ResourceMonitor, decode_secret_value

if TYPE_CHECKING:
    from kubetemplate.engine.engine import Engine

_log = structlog.get_logger(component="provider")

T = TypeVar("T")

# Network() arguments mapped onto discoverer methods.
_NETWORK_KINDS: dict[str, str] = {
    "hostname": "hostname",
    "privatev4": "private_ipv4",
    "privateipv4": "private_ipv4",
    "publicv4": "public_ipv4",
    "publicipv4": "public_ipv4",
    "publicv6": "public_ipv6",
    "publicipv6": "public_ipv6",
}


def _learnable(
    fallback: Callable[[], T],
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Return *fallback()* instead of raising DataUnavailableError while learning."""

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(self: DataProvider, *args: Any) -> T:
            try:
                return await fn(self, *args)
            except DataUnavailableError as exc:
                if not self.learning:
                    raise
                _log.debug("learn_value_unavailable", accessor=fn.__name__, error=str(exc))
                return fallback()

        return wrapper

    return decorator


class DataProvider:
    """Accessor functions for a single template execution."""

    def __init__(self, engine: Engine, learning: bool) -> None:
        self._engine = engine
        self.learning = learning

    def template_globals(self) -> dict[str, Callable[..., Any]]:
        """Accessors keyed by their template names, plus snake_case aliases."""
        accessors: dict[str, Callable[..., Any]] = {
            "ConfigMap": self.config_map,
            "Secret": self.secret,
            "SecretBinary": self.secret_binary,
            "Env": self.env,
            "Service": self.service,
            "ServiceIP": self.service_ip,
            "Endpoints": self.endpoints,
            "EndpointIPs": self.endpoint_ips,
            "Network": self.network,
        }
        accessors.update({fn.__name__: fn for fn in list(accessors.values())})
        return accessors

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def _monitor(self, kind: ResourceKind, namespace: str) -> ResourceMonitor:
        ns = resolve_namespace(namespace)
        if self.learning:
            controller = self._engine.ensure_namespace(ns)
        else:
            found = self._engine.namespace(ns)
            if found is None:
                raise NamespaceNotMonitoredError(ns)
            controller = found
        return controller.monitor(kind)

    def _keyed(self, kind: ResourceKind, name: str, namespace: str, key: str) -> tuple[KeyedMonitor, dict[str, Any]]:
        monitor = cast(KeyedMonitor, self._monitor(kind, namespace))
        if self.learning:
            monitor.register(name, key)
        return monitor, self._require(monitor, name)

    def _named(self, kind: ResourceKind, name: str, namespace: str) -> dict[str, Any]:
        monitor = cast(NamedMonitor, self._monitor(kind, namespace))
        if self.learning:
            monitor.register(name)
        return self._require(monitor, name)

    @staticmethod
    def _require(monitor: ResourceMonitor, name: str) -> dict[str, Any]:
        obj = monitor.get(name)
        if obj is None:
            raise ResourceNotFoundError(str(monitor.kind), monitor.namespace, name)
        return obj

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @_learnable(str)
    async def config_map(self, name: str, namespace: str, key: str) -> str:
        """Value of *key* in ConfigMap *name*, or "" when the key is absent."""
        _, obj = self._keyed(ResourceKind.CONFIG_MAP, name, namespace, key)
        value = (obj.get("data") or {}).get(key)
        return "" if value is None else str(value)

    @_learnable(str)
    async def secret(self, name: str, namespace: str, key: str) -> str:
        """Decoded value of *key* in Secret *name*, or "" when the key is absent."""
        monitor, obj = self._keyed(ResourceKind.SECRET, name, namespace, key)
        raw = (obj.get("data") or {}).get(key)
        if raw is None:
            return ""
        try:
            return decode_secret_value(str(raw)).decode("utf-8")
        except ValueError as exc:
            raise SecretDecodeError(name, monitor.namespace, key, exc) from exc

    @_learnable(bytes)
    async def secret_binary(self, name: str, namespace: str, key: str) -> bytes:
        """Base64 text of *key* in Secret *name* as bytes, or b"" when the key is absent."""
        _, obj = self._keyed(ResourceKind.SECRET, name, namespace, key)
        raw = (obj.get("data") or {}).get(key)
        if raw is None:
            return b""
        return str(raw).encode()

    async def env(self, name: str) -> str:
        return os.environ.get(name, "")

    @_learnable(lambda: ServiceRecord(name="", namespace=""))
    async def service(self, name: str, namespace: str) -> ServiceRecord:
        return ServiceRecord.from_raw(self._named(ResourceKind.SERVICE, name, namespace))

    async def service_ip(self, name: str, namespace: str) -> str:
        return (await self.service(name, namespace)).cluster_ip

    @_learnable(lambda: EndpointSetRecord(name="", namespace=""))
    async def endpoints(self, name: str, namespace: str) -> EndpointSetRecord:
        return EndpointSetRecord.from_raw(self._named(ResourceKind.ENDPOINTS, name, namespace))

    async def endpoint_ips(self, name: str, namespace: str) -> list[str]:
        return (await self.endpoints(name, namespace)).ips

    @_learnable(str)
    async def network(self, kind: str) -> str:
        """Hostname or address of this host; see ``_NETWORK_KINDS`` for *kind*."""
        method = _NETWORK_KINDS.get(str(kind).lower())
        if method is None:
            raise UnrecognizedNetworkKindError(str(kind))
        result: str = await getattr(self._engine.discoverer, method)()
        return result
