"""Service monitor: an update counts when the spec changes."""

from __future__ import annotations

import json
from typing import Any

from kubetemplate.models.resources import ResourceKind
from kubetemplate.monitors.base import NamedMonitor


def canonical_spec(obj: dict[str, Any]) -> str:
    """Serialize a Service spec with sorted keys so equal specs compare equal."""
    return json.dumps(obj.get("spec") or {}, sort_keys=True, default=str)


class ServiceMonitor(NamedMonitor):
    kind = ResourceKind.SERVICE

    def is_material(self, old: dict[str, Any], new: dict[str, Any]) -> bool:
        return canonical_spec(old) != canonical_spec(new)
