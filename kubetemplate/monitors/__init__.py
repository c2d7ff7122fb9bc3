"""Per-kind monitors and the registry that maps kind names onto them."""

from kubetemplate.monitors.base import KeyedMonitor, NamedMonitor, ResourceMonitor
from kubetemplate.monitors.configmap import ConfigMapMonitor
from kubetemplate.monitors.endpoints import EndpointsMonitor, endpoints_digest
from kubetemplate.monitors.secret import SecretMonitor, decode_secret_value
from kubetemplate.monitors.service import ServiceMonitor, canonical_spec

_MONITOR_TYPES: dict[str, type[ResourceMonitor]] = {
    str(cls.kind).lower(): cls for cls in (ConfigMapMonitor, SecretMonitor, ServiceMonitor, EndpointsMonitor)
}


def get_monitor_type(kind: str) -> type[ResourceMonitor]:
    """Return the monitor class for *kind* (case-insensitive).

    Raises:
        KeyError: if no monitor handles *kind*.
    """
    try:
        return _MONITOR_TYPES[str(kind).lower()]
    except KeyError:
        raise KeyError(f"no monitor registered for kind {kind!r}") from None


def monitor_types() -> list[type[ResourceMonitor]]:
    return list(_MONITOR_TYPES.values())


__all__ = [
    "ConfigMapMonitor",
    "EndpointsMonitor",
    "KeyedMonitor",
    "NamedMonitor",
    "ResourceMonitor",
    "SecretMonitor",
    "ServiceMonitor",
    "canonical_spec",
    "decode_secret_value",
    "endpoints_digest",
    "get_monitor_type",
    "monitor_types",
]
