"""Secret monitor.

Secret data arrives base64-encoded.  Values are compared after decoding so a
re-encoding of the same bytes does not count as a change; a value that does
not decode is compared as-is.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from kubetemplate.models.resources import ResourceKind
from kubetemplate.monitors.base import KeyedMonitor


def decode_secret_value(raw: str) -> bytes:
    """Decode one Secret data value.

    Raises:
        binascii.Error: if *raw* is not valid base64.
    """
    return base64.b64decode(raw, validate=True)


class SecretMonitor(KeyedMonitor):
    kind = ResourceKind.SECRET

    @staticmethod
    def value(raw: Any) -> Any:
        try:
            return decode_secret_value(str(raw))
        except (binascii.Error, ValueError):
            return raw
