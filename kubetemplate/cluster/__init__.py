"""Kubernetes access: the list/watch client and the per-kind watch cache."""

from kubetemplate.cluster.client import KubernetesResourceClient, ResourceClient, build_client
from kubetemplate.cluster.watch_cache import WatchCache

__all__ = ["KubernetesResourceClient", "ResourceClient", "WatchCache", "build_client"]
