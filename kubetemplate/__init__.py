"""kubetemplate: render configuration templates from live Kubernetes state.

Templates are learned once to discover the ConfigMaps, Secrets, Services and
Endpoints they read, after which per-namespace watches keep a local cache
current and signal when a re-render is warranted.
"""

from kubetemplate.engine import DataProvider, Engine
from kubetemplate.errors import (
    KubeTemplateError,
    NamespaceNotMonitoredError,
    ResourceNotFoundError,
    SecretDecodeError,
    UnrecognizedNetworkKindError,
    WatchFailureError,
)

__version__ = "0.3.0"

__all__ = [
    "DataProvider",
    "Engine",
    "KubeTemplateError",
    "NamespaceNotMonitoredError",
    "ResourceNotFoundError",
    "SecretDecodeError",
    "UnrecognizedNetworkKindError",
    "WatchFailureError",
    "__version__",
]
