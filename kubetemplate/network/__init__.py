"""Network identity discovery."""

from kubetemplate.network.discover import Discoverer, NetDiscoverer

__all__ = ["Discoverer", "NetDiscoverer"]
