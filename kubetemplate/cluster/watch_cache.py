"""List-then-watch cache for one (namespace, kind).

``WatchCache.events()`` keeps ``store`` current and yields a ``WatchEvent``
for every change after the initial list.  Every resync interval the watch is
allowed to time out and the cache relists, diffing the fresh list against the
store so that changes missed while disconnected still surface as events.

Failure handling:
- HTTP 410 (resource version expired) triggers an immediate relist.
- Anything else ends the stream with WatchFailureError; the cache is not
  restarted here.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from typing import Any

from kubetemplate.cluster.client import ResourceClient
from kubetemplate.errors import ResourceExpiredError, WatchFailureError
from kubetemplate.models.resources import (
    ResourceKind,
    WatchEvent,
    WatchEventType,
    object_name,
    resource_version,
)
from kubetemplate.observability.logging import get_logger
from kubetemplate.observability.metrics import WATCH_EVENTS_TOTAL

# Raw API event types mapped onto the cache's event model.
_EVENT_TYPES: dict[str, WatchEventType] = {
    "ADDED": WatchEventType.ADDED,
    "MODIFIED": WatchEventType.UPDATED,
    "DELETED": WatchEventType.DELETED,
}


class WatchCache:
    """Local copy of every object of one kind in one namespace."""

    def __init__(
        self,
        client: ResourceClient,
        kind: ResourceKind,
        namespace: str,
        resync_seconds: int = 300,
    ) -> None:
        self._client = client
        self.kind = kind
        self.namespace = namespace
        self.resync_seconds = resync_seconds
        self.store: dict[str, dict[str, Any]] = {}
        self.synced = asyncio.Event()
        self.resource_version = ""
        self._log = get_logger("watch_cache", kind=str(kind), namespace=namespace)

    def get(self, name: str) -> dict[str, Any] | None:
        return self.store.get(name)

    def names(self) -> list[str]:
        return sorted(self.store)

    async def events(self) -> AsyncIterator[WatchEvent]:
        """Run list/watch forever, yielding changes.

        Raises:
            WatchFailureError: when listing or watching fails for any reason
                other than an expired resource version.
        """
        while True:
            try:
                items, rv = await self._client.list(self.kind, self.namespace)
            except Exception as exc:
                raise WatchFailureError(str(self.kind), self.namespace, exc) from exc

            for event in self._replace(items):
                yield event
            self.resource_version = rv
            if not self.synced.is_set():
                self.synced.set()
                self._log.debug("cache_synced", count=len(self.store))

            try:
                async for event_type, raw in self._client.watch(
                    self.kind, self.namespace, self.resource_version, self.resync_seconds
                ):
                    event = self._apply(event_type, raw)
                    if event is not None:
                        yield event
            except ResourceExpiredError:
                self._log.debug("watch_expired")
                continue
            except Exception as exc:
                raise WatchFailureError(str(self.kind), self.namespace, exc) from exc

            self._log.debug("watch_resync")

    # ------------------------------------------------------------------
    # Store maintenance
    # ------------------------------------------------------------------

    def _replace(self, items: list[dict[str, Any]]) -> Iterator[WatchEvent]:
        """Swap in a freshly listed set of objects.

        The first list only seeds the store.  Later lists are diffed against
        it; objects whose resourceVersion is unchanged produce nothing.
        """
        fresh = {object_name(obj): obj for obj in items}
        previous = self.store
        self.store = fresh
        if not self.synced.is_set():
            return

        for name, obj in fresh.items():
            old = previous.get(name)
            if old is None:
                yield self._record(WatchEvent(WatchEventType.ADDED, obj))
            elif resource_version(old) != resource_version(obj):
                yield self._record(WatchEvent(WatchEventType.UPDATED, obj, old))
        for name, old in previous.items():
            if name not in fresh:
                yield self._record(WatchEvent(WatchEventType.DELETED, old))

    def _apply(self, event_type: str, raw: dict[str, Any]) -> WatchEvent | None:
        rv = resource_version(raw)
        if rv:
            self.resource_version = rv

        mapped = _EVENT_TYPES.get(event_type)
        if mapped is None:
            # BOOKMARK and friends only advance the resource version.
            return None

        name = object_name(raw)
        old = self.store.get(name)
        if mapped is WatchEventType.DELETED:
            self.store.pop(name, None)
            return self._record(WatchEvent(WatchEventType.DELETED, old if old is not None else raw))

        self.store[name] = raw
        if old is None:
            return self._record(WatchEvent(WatchEventType.ADDED, raw))
        return self._record(WatchEvent(WatchEventType.UPDATED, raw, old))

    def _record(self, event: WatchEvent) -> WatchEvent:
        WATCH_EVENTS_TOTAL.labels(kind=str(self.kind), type=str(event.type)).inc()
        return event
