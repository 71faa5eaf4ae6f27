"""UDP sockets with IP_TRANSPARENT set, and reading original destinations."""

from __future__ import annotations

import ipaddress
import socket
import struct

from .addresses import (
    IP_RECVORIGDSTADDR,
    IP_TRANSPARENT,
    SOL_IP,
    Endpoint,
    TProxyError,
    _failing_step,
    address_family,
)
from .addresses import _listening_socket

_ANCILLARY_SIZE = 1024
_SOCKADDR_IN_SIZE = 16
_SOCKADDR_IN6_SIZE = 28


def listen_udp(network, endpoint) -> socket.socket:
    """Bind a UDP socket that receives intercepted packets with their original destination."""
    sock = _listening_socket(network, endpoint, "udp", socket.SOCK_DGRAM, reuse_address=False)
    with _failing_step(sock, "listen", "set socket option: IP_TRANSPARENT", network, endpoint):
        sock.setsockopt(SOL_IP, IP_TRANSPARENT, 1)
    with _failing_step(sock, "listen", "set socket option: IP_RECVORIGDSTADDR", network, endpoint):
        sock.setsockopt(SOL_IP, IP_RECVORIGDSTADDR, 1)
    return sock


def _decode_sockaddr(data: bytes) -> Endpoint:
    if len(data) < _SOCKADDR_IN_SIZE:
        raise ValueError("reading original destination address: unexpected EOF")
    (family,) = struct.unpack_from("<H", data, 0)
    (port,) = struct.unpack_from("!H", data, 2)
    if family == socket.AF_INET:
        return Endpoint(ipaddress.IPv4Address(bytes(data[4:8])), port)
    if family == socket.AF_INET6:
        if len(data) < _SOCKADDR_IN6_SIZE:
            raise ValueError("reading original destination address: unexpected EOF")
        (scope_id,) = struct.unpack_from("<I", data, 24)
        return Endpoint(ipaddress.IPv6Address(bytes(data[8:24])), port, str(scope_id))
    raise ValueError("original destination is an unsupported network family")


def parse_original_destination(ancillary) -> Endpoint:
    """Find the original destination among ``(level, type, data)`` control messages."""
    destination = None
    for level, kind, data in ancillary:
        if level == SOL_IP and kind == IP_RECVORIGDSTADDR:
            destination = _decode_sockaddr(data)
    if destination is None:
        raise ValueError("unable to obtain original destination")
    return destination


def read_from_udp(sock, bufsize=65535) -> tuple[bytes, Endpoint, Endpoint]:
    """Receive one packet and return its payload, sender and original destination."""
    data, ancillary, _flags, address = sock.recvmsg(bufsize, _ANCILLARY_SIZE)
    destination = parse_original_destination(ancillary)
    return data, Endpoint.from_sockaddr(address), destination


def dial_udp(network, local, remote) -> socket.socket:
    """Open a UDP socket bound to ``local`` (any address) and connected to ``remote``."""
    try:
        destination = remote.sockaddr()
    except ValueError as exc:
        raise TProxyError("dial", f"build destination socket address: {exc}") from exc
    try:
        source = local.sockaddr()
    except ValueError as exc:
        raise TProxyError("dial", f"build local socket address: {exc}") from exc

    try:
        sock = socket.socket(address_family(network, local, remote), socket.SOCK_DGRAM, 0)
    except (OSError, ValueError) as exc:
        raise TProxyError("dial", f"socket open: {exc}") from exc

    with _failing_step(sock, "dial", "set socket option: SO_REUSEADDR"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    with _failing_step(sock, "dial", "set socket option: IP_TRANSPARENT"):
        sock.setsockopt(SOL_IP, IP_TRANSPARENT, 1)
    with _failing_step(sock, "dial", "socket bind"):
        sock.bind(source)
    with _failing_step(sock, "dial", "socket connect"):
        sock.connect(destination)
    return sock