"""ConfigMap monitor: an update counts when any watched key appears, disappears or changes."""

from __future__ import annotations

from kubetemplate.models.resources import ResourceKind
from kubetemplate.monitors.base import KeyedMonitor


class ConfigMapMonitor(KeyedMonitor):
    kind = ResourceKind.CONFIG_MAP
