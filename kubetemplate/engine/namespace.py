"""Per-namespace controller: one watch cache and one monitor for each kind."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from kubetemplate.cluster.client import ResourceClient
from kubetemplate.cluster.watch_cache import WatchCache
from kubetemplate.engine.signal import ChangeSignal
from kubetemplate.errors import WatchFailureError
from kubetemplate.models.resources import Dependency, ResourceKind
from kubetemplate.monitors import (
    ConfigMapMonitor,
    EndpointsMonitor,
    ResourceMonitor,
    SecretMonitor,
    ServiceMonitor,
    get_monitor_type,
)
from kubetemplate.observability.logging import get_logger
from kubetemplate.observability.metrics import WATCH_FAILURES_TOTAL


class NamespaceController:
    """Owns the four monitors of a single namespace.

    Controllers are created on first reference and live as long as their
    engine.  A monitor whose watch fails is not restarted: the failure is
    recorded, reported through *on_failure*, and the other kinds keep running.
    """

    def __init__(
        self,
        name: str,
        client: ResourceClient,
        signal: ChangeSignal,
        resync_seconds: int = 300,
        on_failure: Callable[[WatchFailureError], None] | None = None,
    ) -> None:
        self.name = name
        self._on_failure = on_failure
        self._log = get_logger("namespace", namespace=name)
        self.monitors: dict[ResourceKind, ResourceMonitor] = {}
        for kind in ResourceKind:
            cache = WatchCache(client, kind, name, resync_seconds=resync_seconds)
            self.monitors[kind] = get_monitor_type(kind)(cache, signal)
        self.failures: list[WatchFailureError] = []
        self._failed = asyncio.Event()
        self._finished = asyncio.Event()

    def monitor(self, kind: ResourceKind) -> ResourceMonitor:
        return self.monitors[ResourceKind(kind)]

    @property
    def config_maps(self) -> ConfigMapMonitor:
        return self.monitors[ResourceKind.CONFIG_MAP]  # type: ignore[return-value]

    @property
    def secrets(self) -> SecretMonitor:
        return self.monitors[ResourceKind.SECRET]  # type: ignore[return-value]

    @property
    def services(self) -> ServiceMonitor:
        return self.monitors[ResourceKind.SERVICE]  # type: ignore[return-value]

    @property
    def endpoints(self) -> EndpointsMonitor:
        return self.monitors[ResourceKind.ENDPOINTS]  # type: ignore[return-value]

    @property
    def synced(self) -> bool:
        return all(m.cache.synced.is_set() for m in self.monitors.values())

    def dependencies(self) -> list[Dependency]:
        deps: list[Dependency] = []
        for monitor in self.monitors.values():
            deps.extend(monitor.dependencies())
        return deps

    async def wait_synced(self, timeout: float, stop: asyncio.Event | None = None) -> bool:
        """Wait until every cache has completed its first list.

        Returns early, with False, on timeout, when a watch fails, or when
        *stop* is set.
        """
        waiters = [
            asyncio.create_task(self._all_synced()),
            asyncio.create_task(self._failed.wait()),
            asyncio.create_task(self._finished.wait()),
        ]
        if stop is not None:
            waiters.append(asyncio.create_task(stop.wait()))
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        return self.synced

    async def _all_synced(self) -> None:
        for monitor in self.monitors.values():
            await monitor.cache.synced.wait()

    async def run(self, stop: asyncio.Event) -> None:
        """Run the monitor loops until *stop* is set or all of them have ended."""
        tasks = {
            asyncio.create_task(monitor.run(), name=f"monitor-{self.name}-{kind}"): kind
            for kind, monitor in self.monitors.items()
        }
        stopper = asyncio.create_task(stop.wait(), name=f"stop-{self.name}")
        pending = set(tasks)
        self._log.info("namespace_started")
        try:
            while pending:
                done, _ = await asyncio.wait(pending | {stopper}, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is stopper:
                        continue
                    pending.discard(task)
                    self._collect(task, tasks[task])
                if stopper in done:
                    break
        finally:
            stopper.cancel()
            for task in pending:
                task.cancel()
            await asyncio.gather(stopper, *pending, return_exceptions=True)
            self._finished.set()
            self._log.info("namespace_stopped")

    def _collect(self, task: asyncio.Task[None], kind: ResourceKind) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            self._log.warning("monitor_exited", kind=str(kind))
            return

        failure = exc if isinstance(exc, WatchFailureError) else WatchFailureError(str(kind), self.name, exc)
        WATCH_FAILURES_TOTAL.labels(kind=str(kind)).inc()
        self._log.error("watch_failed", kind=str(kind), error=str(failure))
        self.failures.append(failure)
        self._failed.set()
        if self._on_failure is not None:
            self._on_failure(failure)
