"""Local network identity: hostname, private IPv4, public IPv4/IPv6.

Public addresses come from plain-text "what is my IP" HTTP services.
Successful lookups are remembered for the lifetime of the discoverer.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Protocol

import httpx
import structlog

from kubetemplate.errors import NetworkDiscoveryError

_log = structlog.get_logger(component="network")

# Any routable private address works; no packet is sent for a UDP connect.
_PROBE_ADDRESS = ("10.254.254.254", 1)


class Discoverer(Protocol):
    async def hostname(self) -> str: ...

    async def private_ipv4(self) -> str: ...

    async def public_ipv4(self) -> str: ...

    async def public_ipv6(self) -> str: ...


class NetDiscoverer:
    """Default ``Discoverer`` for a pod or host."""

    def __init__(
        self,
        public_ipv4_url: str = "https://api.ipify.org",
        public_ipv6_url: str = "https://api6.ipify.org",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._public_ipv4_url = public_ipv4_url
        self._public_ipv6_url = public_ipv6_url
        self._timeout = timeout_seconds
        self._transport = transport
        self._cache: dict[str, str] = {}

    async def hostname(self) -> str:
        if "hostname" not in self._cache:
            name = socket.gethostname()
            if not name:
                raise NetworkDiscoveryError("hostname", "empty hostname")
            self._cache["hostname"] = name
        return self._cache["hostname"]

    async def private_ipv4(self) -> str:
        if "privatev4" in self._cache:
            return self._cache["privatev4"]

        loop = asyncio.get_running_loop()
        host = await self.hostname()
        try:
            infos = await loop.getaddrinfo(host, None, family=socket.AF_INET)
        except socket.gaierror as exc:
            _log.debug("hostname_resolution_failed", host=host, error=str(exc))
            infos = []

        for info in infos:
            addr = ipaddress.IPv4Address(info[4][0])
            if addr.is_private and not addr.is_loopback:
                self._cache["privatev4"] = str(addr)
                return str(addr)

        try:
            probed = await loop.run_in_executor(None, _probe_outbound_ipv4)
        except OSError as exc:
            raise NetworkDiscoveryError("privatev4", str(exc)) from exc
        addr = ipaddress.IPv4Address(probed)
        if not addr.is_private or addr.is_loopback:
            raise NetworkDiscoveryError("privatev4", f"no private address found (outbound address {addr})")
        self._cache["privatev4"] = str(addr)
        return str(addr)

    async def public_ipv4(self) -> str:
        return await self._public("publicv4", self._public_ipv4_url, 4)

    async def public_ipv6(self) -> str:
        return await self._public("publicv6", self._public_ipv6_url, 6)

    async def _public(self, kind: str, url: str, version: int) -> str:
        if kind in self._cache:
            return self._cache[kind]

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise NetworkDiscoveryError(kind, f"request to {url} timed out") from exc
        except httpx.HTTPError as exc:
            raise NetworkDiscoveryError(kind, str(exc)) from exc

        text = response.text.strip()
        try:
            addr = ipaddress.ip_address(text)
        except ValueError as exc:
            raise NetworkDiscoveryError(kind, f"invalid address {text[:64]!r} from {url}") from exc
        if addr.version != version:
            raise NetworkDiscoveryError(kind, f"expected IPv{version} address from {url}, got {addr}")

        self._cache[kind] = str(addr)
        _log.debug("public_address_discovered", kind=kind, address=str(addr))
        return str(addr)


def _probe_outbound_ipv4() -> str:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(_PROBE_ADDRESS)
        return str(sock.getsockname()[0])
