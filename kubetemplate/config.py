"""Configuration loading from environment variables."""

from __future__ import annotations

import os
from urllib.parse import urlparse

from kubetemplate.errors import NamespaceResolutionError
from kubetemplate.models.config import (
    ClusterConfig,
    KubeTemplateConfig,
    LogConfig,
    MetricsConfig,
    NetworkConfig,
    TemplateConfig,
    WatchConfig,
)

POD_NAMESPACE_ENV = "POD_NAMESPACE"


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBETEMPLATE_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_float(key: str, default: float, min_val: float | None = None) -> float:
    val = float(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid URL: {value}")
    return value


def load_config() -> KubeTemplateConfig:
    """Load configuration from KUBETEMPLATE_* environment variables."""
    return KubeTemplateConfig(
        template=TemplateConfig(
            template_path=_env("TEMPLATE", ""),
            output_path=_env("OUTPUT", "-") or "-",
            once=_env_bool("ONCE", False),
        ),
        cluster=ClusterConfig(
            kubeconfig=_env("KUBECONFIG", ""),
            api_timeout_seconds=_env_int("API_TIMEOUT", 10, min_val=1, max_val=120),
        ),
        watch=WatchConfig(
            resync_seconds=_env_int("RESYNC_SECONDS", 300, min_val=10, max_val=3600),
            sync_timeout_seconds=_env_float("SYNC_TIMEOUT", 30.0, min_val=0.0),
            restart_backoff_seconds=_env_float("RESTART_BACKOFF", 5.0, min_val=0.0),
        ),
        network=NetworkConfig(
            public_ipv4_url=_validate_url(_env("PUBLIC_IPV4_URL", "https://api.ipify.org")),
            public_ipv6_url=_validate_url(_env("PUBLIC_IPV6_URL", "https://api6.ipify.org")),
            timeout_seconds=_env_float("NETWORK_TIMEOUT", 5.0, min_val=0.1),
        ),
        metrics=MetricsConfig(
            port=_env_int("METRICS_PORT", 0, min_val=0, max_val=65535),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )


def resolve_namespace(namespace: str) -> str:
    """Return *namespace*, or the pod's namespace when it is empty.

    Raises:
        NamespaceResolutionError: if *namespace* is empty and POD_NAMESPACE is unset.
    """
    if namespace:
        return namespace
    default = os.environ.get(POD_NAMESPACE_ENV, "")
    if not default:
        raise NamespaceResolutionError(f"no namespace given and {POD_NAMESPACE_ENV} is not set")
    return default
