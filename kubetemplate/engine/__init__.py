"""Learn/render template engine and its per-namespace change monitoring."""

from kubetemplate.engine.engine import Engine, build_environment
from kubetemplate.engine.locking import ReadWriteLock
from kubetemplate.engine.namespace import NamespaceController
from kubetemplate.engine.provider import DataProvider
from kubetemplate.engine.signal import ChangeSignal

__all__ = [
    "ChangeSignal",
    "DataProvider",
    "Engine",
    "NamespaceController",
    "ReadWriteLock",
    "build_environment",
]
