"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TemplateConfig:
    """Template input and rendered output."""

    template_path: str = ""
    output_path: str = "-"
    once: bool = False


@dataclass
class ClusterConfig:
    """Kubernetes API access."""

    kubeconfig: str = ""
    api_timeout_seconds: int = 10


@dataclass
class WatchConfig:
    """Watch cache behaviour."""

    resync_seconds: int = 300
    sync_timeout_seconds: float = 30.0
    restart_backoff_seconds: float = 5.0


@dataclass
class NetworkConfig:
    """Network identity discovery."""

    public_ipv4_url: str = "https://api.ipify.org"
    public_ipv6_url: str = "https://api6.ipify.org"
    timeout_seconds: float = 5.0


@dataclass
class MetricsConfig:
    """Prometheus exporter. Port 0 disables it."""

    port: int = 0


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class KubeTemplateConfig:
    """Top-level kubetemplate configuration."""

    template: TemplateConfig = field(default_factory=TemplateConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
