"""Per-kind resource monitors.

A monitor sits between one ``WatchCache`` and the engine's change signal.
It holds the interest set learned from templates and, for every watch event,
applies three steps in order:

1. filter: events for names outside the interest set are ignored;
2. materiality: additions and deletions always count, updates are passed to
   the kind-specific ``is_material`` check;
3. emit: a material change posts the (coalescing) change signal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

import structlog

from kubetemplate.cluster.watch_cache import WatchCache
from kubetemplate.engine.signal import ChangeSignal
from kubetemplate.models.resources import Dependency, ResourceKind, WatchEvent, WatchEventType
from kubetemplate.observability.metrics import CHANGES_DETECTED_TOTAL

_log = structlog.get_logger(component="monitor")


class ResourceMonitor(ABC):
    """Base class for the four per-kind monitors."""

    kind: ClassVar[ResourceKind]

    def __init__(self, cache: WatchCache, signal: ChangeSignal) -> None:
        self.cache = cache
        self.signal = signal

    @property
    def namespace(self) -> str:
        return self.cache.namespace

    @abstractmethod
    def interested(self, name: str) -> bool:
        """Return True when *name* is in the interest set."""

    @abstractmethod
    def is_material(self, old: dict[str, Any], new: dict[str, Any]) -> bool:
        """Return True when an update from *old* to *new* affects what templates read."""

    @abstractmethod
    def dependencies(self) -> list[Dependency]:
        """Return the learned interest set as dependency records."""

    def get(self, name: str) -> dict[str, Any] | None:
        """Return the cached object called *name*, or None."""
        return self.cache.get(name)

    def handle(self, event: WatchEvent) -> bool:
        """Process one watch event. Returns True when it was material."""
        name = event.name
        if not self.interested(name):
            return False

        if event.type is WatchEventType.UPDATED:
            material = self.is_material(event.old or {}, event.obj)
        else:
            material = True

        if not material:
            _log.debug("change_ignored", kind=str(self.kind), namespace=self.namespace, name=name)
            return False

        CHANGES_DETECTED_TOTAL.labels(kind=str(self.kind)).inc()
        queued = self.signal.notify()
        _log.info(
            "change_detected",
            kind=str(self.kind),
            namespace=self.namespace,
            name=name,
            event_type=str(event.type),
            coalesced=not queued,
        )
        return True

    async def run(self) -> None:
        """Consume the cache's event stream until cancelled or the watch fails."""
        async for event in self.cache.events():
            self.handle(event)


class KeyedMonitor(ResourceMonitor):
    """Monitor whose interest is a set of keys per object (ConfigMap, Secret)."""

    def __init__(self, cache: WatchCache, signal: ChangeSignal) -> None:
        super().__init__(cache, signal)
        # Plain dicts keep insertion order, which keeps dependency output stable.
        self._interest: dict[str, dict[str, None]] = {}

    def register(self, name: str, key: str) -> bool:
        """Add *key* of *name* to the interest set. Returns True when it was new."""
        keys = self._interest.setdefault(name, {})
        if key in keys:
            return False
        keys[key] = None
        return True

    def interested(self, name: str) -> bool:
        return name in self._interest

    def keys(self, name: str) -> list[str]:
        return list(self._interest.get(name, ()))

    def dependencies(self) -> list[Dependency]:
        return [
            Dependency(namespace=self.namespace, kind=self.kind, name=name, keys=tuple(keys))
            for name, keys in self._interest.items()
        ]

    def is_material(self, old: dict[str, Any], new: dict[str, Any]) -> bool:
        old_data = self.data(old)
        new_data = self.data(new)
        for key in self.keys(_name_of(new) or _name_of(old)):
            if key not in old_data or key not in new_data:
                return True
            if self.value(old_data[key]) != self.value(new_data[key]):
                return True
        return False

    @staticmethod
    def data(obj: dict[str, Any]) -> dict[str, Any]:
        return obj.get("data") or {}

    @staticmethod
    def value(raw: Any) -> Any:
        """Normalize a stored value before comparison."""
        return raw


class NamedMonitor(ResourceMonitor):
    """Monitor whose interest is a set of object names (Service, Endpoints)."""

    def __init__(self, cache: WatchCache, signal: ChangeSignal) -> None:
        super().__init__(cache, signal)
        self._interest: dict[str, None] = {}

    def register(self, name: str) -> bool:
        """Add *name* to the interest set. Returns True when it was new."""
        if name in self._interest:
            return False
        self._interest[name] = None
        return True

    def interested(self, name: str) -> bool:
        return name in self._interest

    def dependencies(self) -> list[Dependency]:
        return [Dependency(namespace=self.namespace, kind=self.kind, name=name) for name in self._interest]


def _name_of(obj: dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("name", ""))
