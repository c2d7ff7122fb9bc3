"""Core data structures for kubetemplate."""

from kubetemplate.models.config import KubeTemplateConfig
from kubetemplate.models.resources import (
    Dependency,
    EndpointAddress,
    EndpointPort,
    EndpointSetRecord,
    EndpointSubset,
    ResourceKind,
    ServicePort,
    ServiceRecord,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    "Dependency",
    "EndpointAddress",
    "EndpointPort",
    "EndpointSetRecord",
    "EndpointSubset",
    "KubeTemplateConfig",
    "ResourceKind",
    "ServicePort",
    "ServiceRecord",
    "WatchEvent",
    "WatchEventType",
]
