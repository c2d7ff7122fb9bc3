"""Template engine facade.

Lifecycle:
    engine = Engine(client, discoverer)
    await engine.learn(source)      # discover dependencies, start watches
    text = await engine.render(source)
    await engine.wait()             # returns once something material changed
    await engine.aclose()

Learning and rendering share a reader/writer lock: ``learn`` is the writer,
``render`` the reader, so renders may overlap each other but never a learn.
"""

from __future__ import annotations

import asyncio
import time
from typing import TextIO

import jinja2
import structlog

from kubetemplate.cluster.client import ResourceClient
from kubetemplate.engine.locking import ReadWriteLock
from kubetemplate.engine.namespace import NamespaceController
from kubetemplate.engine.provider import DataProvider
from kubetemplate.engine.signal import ChangeSignal
from kubetemplate.errors import NamespaceResolutionError, UnrecognizedNetworkKindError, WatchFailureError
from kubetemplate.models.resources import Dependency
from kubetemplate.network.discover import Discoverer
from kubetemplate.observability.metrics import (
    MONITORED_NAMESPACES,
    TEMPLATE_DURATION_SECONDS,
    TEMPLATE_EXECUTIONS_TOTAL,
)

_log = structlog.get_logger(component="engine")

_MAX_LEARN_PASSES = 5

# Errors that no amount of extra learning can fix.
_FATAL_LEARN_ERRORS = (NamespaceResolutionError, UnrecognizedNetworkKindError, jinja2.TemplateSyntaxError)

Template = str | jinja2.Template


def build_environment(learning: bool = False) -> jinja2.Environment:
    """Jinja2 environment for rendering, or for learning when *learning* is set.

    Output is configuration text, not HTML, so nothing is escaped.  Rendering
    is strict about undefined values.  Learning runs against empty placeholder
    values, so indexing into them yields a chainable undefined instead of
    aborting the pass before later accessors register.
    """
    return jinja2.Environment(
        enable_async=True,
        undefined=jinja2.ChainableUndefined if learning else jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )


class Engine:
    """Learns template dependencies, watches them and renders from the live cache."""

    def __init__(
        self,
        client: ResourceClient,
        discoverer: Discoverer,
        resync_seconds: int = 300,
        sync_timeout_seconds: float = 30.0,
        max_learn_passes: int = _MAX_LEARN_PASSES,
    ) -> None:
        self.client = client
        self.discoverer = discoverer
        self.resync_seconds = resync_seconds
        self.sync_timeout_seconds = sync_timeout_seconds
        self.max_learn_passes = max(1, max_learn_passes)
        self.environment = build_environment()
        self.learn_environment = build_environment(learning=True)

        self.namespaces: dict[str, NamespaceController] = {}
        self.failures: list[WatchFailureError] = []
        self.failed = asyncio.Event()

        self._lock = ReadWriteLock()
        self._signal = ChangeSignal()
        self._stop = asyncio.Event()
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def namespace(self, name: str) -> NamespaceController | None:
        return self.namespaces.get(name)

    def ensure_namespace(self, name: str) -> NamespaceController:
        """Return the controller for *name*, creating and starting it if needed.

        Lookup and insert happen without yielding to the event loop, so
        concurrent first references resolve to the same controller.  After
        ``close()`` new controllers are still created, so interest can be
        recorded, but their watches are not started.
        """
        controller = self.namespaces.get(name)
        if controller is not None:
            return controller

        controller = NamespaceController(
            name,
            self.client,
            self._signal,
            resync_seconds=self.resync_seconds,
            on_failure=self._on_failure,
        )
        self.namespaces[name] = controller
        MONITORED_NAMESPACES.set(len(self.namespaces))

        if self.closed:
            _log.warning("namespace_not_started", namespace=name, reason="engine closed")
        else:
            self._tasks[name] = asyncio.create_task(controller.run(self._stop), name=f"namespace-{name}")
            _log.info("namespace_added", namespace=name)
        return controller

    def _on_failure(self, failure: WatchFailureError) -> None:
        self.failures.append(failure)
        self.failed.set()

    def dependencies(self) -> list[Dependency]:
        """Every learned (namespace, kind, name, keys) reference."""
        deps: list[Dependency] = []
        for controller in self.namespaces.values():
            deps.extend(controller.dependencies())
        return deps

    def _interest_size(self) -> int:
        return sum(max(1, len(dep.keys)) for dep in self.dependencies())

    # ------------------------------------------------------------------
    # Learn / render
    # ------------------------------------------------------------------

    def compile(self, template: Template, learning: bool = False) -> jinja2.Template:
        """Compile template source; an already compiled template is used as is."""
        if isinstance(template, jinja2.Template):
            return template
        environment = self.learn_environment if learning else self.environment
        return environment.from_string(template)

    async def _execute(self, template: jinja2.Template, learning: bool) -> str:
        mode = "learn" if learning else "render"
        provider = DataProvider(self, learning=learning)
        start = time.monotonic()
        try:
            text = await template.render_async(**provider.template_globals())
        except Exception:
            TEMPLATE_EXECUTIONS_TOTAL.labels(mode=mode, result="error").inc()
            raise
        finally:
            TEMPLATE_DURATION_SECONDS.labels(mode=mode).observe(time.monotonic() - start)
        TEMPLATE_EXECUTIONS_TOTAL.labels(mode=mode, result="ok").inc()
        return text

    async def learn(self, template: Template) -> None:
        """Execute *template* to register its dependencies; the output is discarded.

        Interest only grows: learning the same template again is a no-op.
        A pass that brings new namespaces into view waits for their caches to
        sync and runs again, so dependencies behind data-dependent branches
        are found too.

        Raises:
            jinja2.TemplateSyntaxError: if the template does not compile.
            NamespaceResolutionError: for an empty namespace with no default.
            UnrecognizedNetworkKindError: for a bad ``Network()`` argument.
            Exception: a template runtime error from a pass that learned nothing new.
        """
        async with self._lock.write():
            compiled = self.compile(template, learning=True)
            for attempt in range(1, self.max_learn_passes + 1):
                known = set(self.namespaces)
                before = self._interest_size()
                error: Exception | None = None
                try:
                    await self._execute(compiled, learning=True)
                except _FATAL_LEARN_ERRORS:
                    raise
                except Exception as exc:
                    error = exc

                grew = self._interest_size() > before
                added = [name for name in self.namespaces if name not in known]
                if added:
                    await self._wait_synced(added)

                if error is not None:
                    if not grew:
                        raise error
                    _log.info("learn_pass_incomplete", attempt=attempt, error=str(error))
                    continue
                if not added:
                    _log.debug("learn_complete", passes=attempt, dependencies=len(self.dependencies()))
                    return

            if error is not None:
                raise error
            _log.warning("learn_pass_limit_reached", passes=self.max_learn_passes)

    async def _wait_synced(self, names: list[str]) -> None:
        results = await asyncio.gather(
            *(self.namespaces[name].wait_synced(self.sync_timeout_seconds, self._stop) for name in names)
        )
        for name, synced in zip(names, results, strict=True):
            if not synced:
                _log.warning("namespace_sync_incomplete", namespace=name, timeout=self.sync_timeout_seconds)

    async def render(self, template: Template, output: TextIO | None = None) -> str:
        """Execute *template* against the live cache.

        The text is returned and, when *output* is given, also written to it.

        Raises:
            NamespaceNotMonitoredError: the template reads a namespace that was
                never learned.
            ResourceNotFoundError: a referenced resource does not exist.
            SecretDecodeError: a Secret value is not valid base64 text.
        """
        async with self._lock.read():
            text = await self._execute(self.compile(template), learning=False)
        if output is not None:
            output.write(text)
        return text

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    async def wait(self, cancel: asyncio.Event | None = None) -> bool:
        """Block until a material change is signalled or *cancel* is set.

        Returns True when a change was consumed and False when *cancel* fired
        first.  A pending change is left in place when returning False.
        """
        if cancel is None:
            await self._signal.wait()
            return True
        if cancel.is_set():
            return False

        signal_task = asyncio.create_task(self._signal.wait())
        cancel_task = asyncio.create_task(cancel.wait())
        try:
            await asyncio.wait({signal_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()
            if not signal_task.done():
                signal_task.cancel()
            await asyncio.gather(signal_task, cancel_task, return_exceptions=True)
            consumed = not signal_task.cancelled() and signal_task.exception() is None
            if consumed and asyncio.current_task().cancelling():  # type: ignore[union-attr]
                # The caller is going away; hand the change back.
                self._signal.notify()
        return consumed

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop every namespace loop. Safe to call more than once."""
        if self._stop.is_set():
            return
        self._stop.set()
        _log.info("engine_closed", namespaces=len(self.namespaces))

    async def aclose(self) -> None:
        """Close and wait for the namespace loops to exit."""
        self.close()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
