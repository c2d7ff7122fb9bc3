"""Kubernetes list/watch access for the four watched kinds.

The rest of the package talks to the cluster only through the small
``ResourceClient`` protocol defined here, which keeps the engine testable
against an in-memory fake.  ``KubernetesResourceClient`` implements it with
kubernetes-asyncio and hands back plain JSON-style dicts (camelCase keys)
rather than generated model objects.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Protocol

import structlog

from kubetemplate.errors import ResourceExpiredError
from kubetemplate.models.resources import ResourceKind

_log = structlog.get_logger(component="cluster_client")

# CoreV1Api method names keyed on kind.
_LIST_METHODS: dict[ResourceKind, str] = {
    ResourceKind.CONFIG_MAP: "list_namespaced_config_map",
    ResourceKind.SECRET: "list_namespaced_secret",
    ResourceKind.SERVICE: "list_namespaced_service",
    ResourceKind.ENDPOINTS: "list_namespaced_endpoints",
}

_HTTP_GONE = 410


class ResourceClient(Protocol):
    """List/watch contract consumed by ``WatchCache``."""

    async def list(self, kind: ResourceKind, namespace: str) -> tuple[list[dict[str, Any]], str]:
        """Return every object of *kind* in *namespace* and the list's resourceVersion."""
        ...

    def watch(
        self,
        kind: ResourceKind,
        namespace: str,
        resource_version: str,
        timeout_seconds: int,
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        """Yield ``(event_type, raw_object)`` pairs newer than *resource_version*.

        The iterator ends normally when the server closes the stream after
        *timeout_seconds*.  Raises ResourceExpiredError when the version is
        too old to resume from.
        """
        ...


class KubernetesResourceClient:
    """ResourceClient backed by kubernetes-asyncio's CoreV1Api."""

    def __init__(self, api_client: Any, api_timeout_seconds: int = 10) -> None:
        from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

        self._api_client = api_client
        self._core_v1 = k8s_client.CoreV1Api(api_client)
        self._api_timeout = api_timeout_seconds

    def _method(self, kind: ResourceKind) -> Any:
        return getattr(self._core_v1, _LIST_METHODS[ResourceKind(kind)])

    async def list(self, kind: ResourceKind, namespace: str) -> tuple[list[dict[str, Any]], str]:
        from kubernetes_asyncio.client import ApiException  # type: ignore[import-untyped]

        try:
            result = await self._method(kind)(namespace, _request_timeout=self._api_timeout)
        except ApiException as exc:
            if exc.status == _HTTP_GONE:
                raise ResourceExpiredError(f"{kind} list in {namespace}: {exc.reason}") from exc
            raise
        raw = self._api_client.sanitize_for_serialization(result)
        items = list(raw.get("items") or [])
        rv = str((raw.get("metadata") or {}).get("resourceVersion", ""))
        _log.debug("listed", kind=str(kind), namespace=namespace, count=len(items), resource_version=rv)
        return items, rv

    async def watch(
        self,
        kind: ResourceKind,
        namespace: str,
        resource_version: str,
        timeout_seconds: int,
    ) -> AsyncIterator[tuple[str, dict[str, Any]]]:
        from kubernetes_asyncio import watch  # type: ignore[import-untyped]
        from kubernetes_asyncio.client import ApiException  # type: ignore[import-untyped]

        try:
            async with watch.Watch() as w:
                stream = w.stream(
                    self._method(kind),
                    namespace,
                    resource_version=resource_version,
                    timeout_seconds=int(timeout_seconds),
                )
                async for event in stream:
                    event_type = str(event.get("type", ""))
                    raw_object = event.get("raw_object") or {}
                    if event_type == "ERROR":
                        if raw_object.get("code") == _HTTP_GONE:
                            raise ResourceExpiredError(str(raw_object.get("message", "resource version expired")))
                        raise RuntimeError(f"watch error event: {raw_object}")
                    yield event_type, raw_object
        except ApiException as exc:
            if exc.status == _HTTP_GONE:
                raise ResourceExpiredError(f"{kind} watch in {namespace}: {exc.reason}") from exc
            raise

    async def close(self) -> None:
        await self._api_client.close()


async def build_client(kubeconfig: str = "", api_timeout_seconds: int = 10) -> KubernetesResourceClient:
    """Load cluster credentials and return a ready ``KubernetesResourceClient``.

    An explicit *kubeconfig* wins; otherwise the in-cluster service account is
    tried first, falling back to the default kubeconfig.
    """
    import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
    from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

    if kubeconfig:
        await k8s_config.load_kube_config(config_file=kubeconfig)
        _log.info("k8s client configured from kubeconfig", path=kubeconfig)
    else:
        try:
            # load_incluster_config() is synchronous in kubernetes-asyncio
            k8s_config.load_incluster_config()
            _log.info("k8s client configured from in-cluster service account")
        except k8s_config.ConfigException:
            await k8s_config.load_kube_config()
            _log.info("k8s client configured from kubeconfig")

    return KubernetesResourceClient(k8s_client.ApiClient(), api_timeout_seconds=api_timeout_seconds)
