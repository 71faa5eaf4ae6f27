"""Socket endpoints, address families and the error type shared by the listeners."""

from __future__ import annotations

import ipaddress
import socket
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Union

SOL_IP = getattr(socket, "SOL_IP", 0)
IP_TRANSPARENT = getattr(socket, "IP_TRANSPARENT", 19)
IP_RECVORIGDSTADDR = getattr(socket, "IP_RECVORIGDSTADDR", 20)

_UINT32_MAX = 0xFFFFFFFF

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class TProxyError(OSError):
    """A failed listen or dial operation on a transparent socket."""

    def __init__(self, op, message, network=None, address=None):
        self.op = op
        self.message = message
        self.network = network
        self.address = address
        parts = [op]
        if network:
            parts.append(network)
        if address is not None:
            parts.append(str(address))
        super().__init__(f"{' '.join(parts)}: {message}")


@dataclass(frozen=True)
class Endpoint:
    """An IP address, port and optional IPv6 zone."""

    ip: IPAddress
    port: int
    zone: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
            object.__setattr__(self, "ip", ipaddress.ip_address(self.ip))
        object.__setattr__(self, "port", int(self.port))
        object.__setattr__(self, "zone", str(self.zone))

    @classmethod
    def from_sockaddr(cls, sockaddr) -> "Endpoint":
        """Build an endpoint from an address tuple as returned by the socket module."""
        host, port, *rest = sockaddr
        host = host.split("%", 1)[0]
        scope_id = rest[1] if len(rest) >= 2 else 0
        return cls(ipaddress.ip_address(host), port, str(scope_id) if scope_id else "")

    def _ipv4(self) -> Optional[ipaddress.IPv4Address]:
        if isinstance(self.ip, ipaddress.IPv4Address):
            return self.ip
        return self.ip.ipv4_mapped

    def is_ipv4(self) -> bool:
        """True for IPv4 addresses and IPv4-mapped IPv6 addresses."""
        return self._ipv4() is not None

    def sockaddr(self) -> tuple:
        """Return the address tuple used to bind or connect a socket.

        IPv6 endpoints need a zone that is a decimal 32-bit interface index.
        """
        v4 = self._ipv4()
        if v4 is not None:
            return (str(v4), self.port)
        zone = self.zone
        if not (zone.isascii() and zone.isdigit()):
            raise ValueError(f"parsing {zone!r}: invalid syntax")
        zone_id = int(zone)
        if zone_id > _UINT32_MAX:
            raise ValueError(f"parsing {zone!r}: value out of range")
        return (str(self.ip), self.port, 0, zone_id)

    def __str__(self) -> str:
        v4 = self._ipv4()
        host = str(v4) if v4 is not None else str(self.ip)
        if self.zone:
            host = f"{host}%{self.zone}"
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{self.port}"


def address_family(network, local=None, remote=None) -> int:
    """Work out the address family from a network name and its endpoints."""
    if not network:
        raise ValueError("empty network name")
    if network.endswith("4"):
        return socket.AF_INET
    if network.endswith("6"):
        return socket.AF_INET6
    if (local is None or local.is_ipv4()) and (remote is None or remote.is_ipv4()):
        return socket.AF_INET
    return socket.AF_INET6


@contextmanager
def _failing_step(sock, op, description, network=None, address=None) -> Iterator[None]:
    """Close ``sock`` and raise TProxyError if the enclosed step fails."""
    try:
        yield
    except (OSError, TypeError, ValueError, OverflowError) as exc:
        sock.close()
        raise TProxyError(op, f"{description}: {exc}", network, address) from exc


def _bind_address(family, endpoint) -> tuple:
    if endpoint is None:
        return ("", 0)
    v4 = endpoint._ipv4()
    if family == socket.AF_INET:
        return (str(v4) if v4 is not None else str(endpoint.ip), endpoint.port)
    if v4 is not None:
        host = "::" if v4.is_unspecified else f"::ffff:{v4}"
        return (host, endpoint.port)
    zone = endpoint.zone
    scope_id = int(zone) if zone.isascii() and zone.isdigit() else 0
    return (str(endpoint.ip), endpoint.port, 0, scope_id)


def _listening_socket(network, endpoint, base, sock_type, reuse_address) -> socket.socket:
    """Open and bind a socket for ``network``, which must be base, base4 or base6."""
    if network not in (base, f"{base}4", f"{base}6"):
        raise TProxyError("listen", f"unknown network {network}", network, endpoint)
    family = address_family(network, endpoint, None)
    try:
        sock = socket.socket(family, sock_type)
    except OSError as exc:
        raise TProxyError("listen", f"socket: {exc}", network, endpoint) from exc
    with _failing_step(sock, "listen", "bind", network, endpoint):
        if reuse_address:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(_bind_address(family, endpoint))
    return sock