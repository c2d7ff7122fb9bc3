"""Application bootstrap for kubetemplate.

Wires the components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → metrics → K8s client → network discoverer
              → engine → learn → first render → render loop

The render loop re-renders whenever the engine signals a material change
and writes the output only when the text differs from the last write.  A
watch failure tears the engine down and builds a fresh one after a backoff.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from kubetemplate.cluster.client import KubernetesResourceClient, build_client
from kubetemplate.config import load_config
from kubetemplate.engine import Engine
from kubetemplate.models.config import KubeTemplateConfig
from kubetemplate.network import NetDiscoverer
from kubetemplate.observability.logging import get_logger, setup_logging
from kubetemplate.observability.metrics import start_metrics_server

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeTemplateApp:
    """Application root. Owns the client, the engine and the render loop.

    ``stop()`` is idempotent: calling it on an app that was never started (or
    already stopped) is safe.
    """

    def __init__(self, config: KubeTemplateConfig | None = None) -> None:
        self.config = config
        self.renders = 0

        self._client: KubernetesResourceClient | None = None
        self._discoverer: NetDiscoverer | None = None
        self._engine: Engine | None = None
        self._template = ""
        self._last_output: str | None = None

        self._shutdown = asyncio.Event()
        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("kubetemplate starting", version=_kubetemplate_version())

        # --- 3. Template ------------------------------------------------
        self._load_template()

        # --- 4. Metrics -------------------------------------------------
        self._start_metrics()

        # --- 5. Kubernetes client ----------------------------------------
        await self._start_client()

        # --- 6. Network discoverer ---------------------------------------
        self._discoverer = NetDiscoverer(
            public_ipv4_url=self.config.network.public_ipv4_url,
            public_ipv6_url=self.config.network.public_ipv6_url,
            timeout_seconds=self.config.network.timeout_seconds,
        )

        # --- 7. Engine, learn and first render ----------------------------
        await self._start_engine()

        self._running = True
        self._log.info("kubetemplate started", namespaces=len(self._engine.namespaces) if self._engine else 0)

    def _load_template(self) -> None:
        assert self.config is not None
        path = self.config.template.template_path
        if not path:
            raise _ComponentError("template", ValueError("no template path configured"))
        try:
            self._template = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise _ComponentError("template", exc) from exc

    def _start_metrics(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            if start_metrics_server(self.config.metrics.port):
                self._log.info("metrics server started", port=self.config.metrics.port)
        except OSError as exc:
            # Metrics are optional; rendering continues without them
            self._log.warning("metrics server failed to start", port=self.config.metrics.port, error=str(exc))

    async def _start_client(self) -> None:
        """Initialise the kubernetes-asyncio client from kubeconfig or in-cluster config."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            self._client = await build_client(
                kubeconfig=self.config.cluster.kubeconfig,
                api_timeout_seconds=self.config.cluster.api_timeout_seconds,
            )
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_engine(self) -> None:
        """Build an engine, learn the template and write the first render."""
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        assert self._discoverer is not None
        engine = Engine(
            self._client,
            self._discoverer,
            resync_seconds=self.config.watch.resync_seconds,
            sync_timeout_seconds=self.config.watch.sync_timeout_seconds,
        )
        self._engine = engine
        try:
            await engine.learn(self._template)
            await self._render()
        except Exception as exc:
            await engine.aclose()
            raise _ComponentError("engine", exc) from exc
        self._log.info("template learned", dependencies=len(engine.dependencies()))

    # ------------------------------------------------------------------
    # Render loop
    # ------------------------------------------------------------------

    async def _render(self) -> bool:
        """Render and write the output if it changed. Returns True on write."""
        assert self._engine is not None
        assert self.config is not None
        text = await self._engine.render(self._template)
        self.renders += 1
        if text == self._last_output:
            if self._log:
                self._log.debug("render unchanged")
            return False
        write_output(self.config.template.output_path, text)
        self._last_output = text
        if self._log:
            self._log.info("rendered", output=self.config.template.output_path, bytes=len(text))
        return True

    async def run(self) -> None:
        """Re-render on every change until shutdown is requested."""
        assert self._log is not None
        assert self.config is not None
        while not self._shutdown.is_set():
            engine = self._engine
            assert engine is not None
            changed = await self._wait_for_change(engine)
            if self._shutdown.is_set():
                return
            if engine.failed.is_set():
                await self._restart_engine(engine)
                continue
            if changed:
                try:
                    await self._render()
                except Exception as exc:
                    # Keep the previous output; the next change retries
                    self._log.error("render failed", error=str(exc))

    async def _wait_for_change(self, engine: Engine) -> bool:
        """Wait for a change, a watch failure, or shutdown."""
        interrupt = asyncio.Event()

        async def _relay(event: asyncio.Event) -> None:
            await event.wait()
            interrupt.set()

        relays = [asyncio.create_task(_relay(engine.failed)), asyncio.create_task(_relay(self._shutdown))]
        try:
            return await engine.wait(cancel=interrupt)
        finally:
            for relay in relays:
                relay.cancel()
            await asyncio.gather(*relays, return_exceptions=True)

    async def _restart_engine(self, engine: Engine) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.warning(
            "watch failure; rebuilding engine",
            failures=[str(f) for f in engine.failures],
            backoff=self.config.watch.restart_backoff_seconds,
        )
        await engine.aclose()
        self._engine = None
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.config.watch.restart_backoff_seconds)
                return
            except TimeoutError:
                pass
            try:
                await self._start_engine()
                return
            except _ComponentError as exc:
                self._log.error("engine restart failed", error=str(exc.cause))

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def stop(self) -> None:
        """Close the engine and the API client."""
        if not self._running and self._log is None:
            # Never started
            return

        log = self._log or get_logger("app")
        log.info("kubetemplate shutting down")
        self._running = False
        self._shutdown.set()

        if self._engine is not None:
            try:
                await asyncio.wait_for(self._engine.aclose(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("engine stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
            self._engine = None

        if self._client is not None:
            try:
                await self._client.close()
            except Exception as exc:
                log.debug("k8s client close raised (non-fatal)", error=str(exc))
            self._client = None

        log.info("kubetemplate stopped")


def write_output(path: str, text: str) -> None:
    """Write *text* to *path* atomically; "-" writes to stdout."""
    if path == "-":
        sys.stdout.write(text)
        sys.stdout.flush()
        return

    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _kubetemplate_version() -> str:
    from kubetemplate import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: KubeTemplateConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeTemplateApp(config)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_shutdown)

    try:
        await app.start()
        assert app.config is not None
        if not app.config.template.once:
            await app.run()
    except _ComponentError as exc:
        # A mandatory component failed; log and exit non-zero
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        raise SystemExit(1) from exc
    finally:
        await app.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
