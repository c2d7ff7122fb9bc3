"""Endpoints monitor.

Endpoint controllers reorder addresses freely, so updates are compared by a
digest that ignores order: ports (``name + port``) and ready addresses are
each sorted before hashing.
"""

from __future__ import annotations

import hashlib
from typing import Any

from kubetemplate.models.resources import ResourceKind
from kubetemplate.monitors.base import NamedMonitor


def endpoints_digest(obj: dict[str, Any]) -> bytes:
    """Return the SHA-256 digest of an Endpoints object's ports and addresses."""
    ports: list[str] = []
    addresses: list[str] = []
    for subset in obj.get("subsets") or []:
        for port in subset.get("ports") or []:
            ports.append(f"{port.get('name') or ''}{int(port.get('port') or 0)}")
        for address in subset.get("addresses") or []:
            addresses.append(str(address.get("ip", "")))

    h = hashlib.sha256()
    for port_str in sorted(ports):
        h.update(port_str.encode())
    for ip in sorted(addresses):
        h.update(ip.encode())
    return h.digest()


class EndpointsMonitor(NamedMonitor):
    kind = ResourceKind.ENDPOINTS

    def is_material(self, old: dict[str, Any], new: dict[str, Any]) -> bool:
        return endpoints_digest(old) != endpoints_digest(new)
