"""TCP listeners with IP_TRANSPARENT set, and dialing the original destination."""

from __future__ import annotations

import errno
import socket

from .addresses import (
    IP_TRANSPARENT,
    SOL_IP,
    Endpoint,
    TProxyError,
    _failing_step,
    _listening_socket,
    address_family,
)


class Connection:
    """A connection accepted by a transparent listener."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def local_endpoint(self) -> Endpoint:
        """The address the client originally tried to reach."""
        return Endpoint.from_sockaddr(self.sock.getsockname())

    def remote_endpoint(self) -> Endpoint:
        """The client's address."""
        return Endpoint.from_sockaddr(self.sock.getpeername())

    def dial_original_destination(self, dont_assume_remote=False) -> socket.socket:
        """Open a TCP connection to the destination the client was trying to reach.

        Unless ``dont_assume_remote`` is true, the new connection originates from
        the client's own address and port; otherwise the kernel chooses them.
        """
        local = self.local_endpoint()
        remote = self.remote_endpoint()
        try:
            destination = local.sockaddr()
        except ValueError as exc:
            raise TProxyError("dial", f"build destination socket address: {exc}") from exc
        try:
            source = remote.sockaddr()
        except ValueError as exc:
            raise TProxyError("dial", f"build local socket address: {exc}") from exc

        try:
            out = socket.socket(address_family("tcp", local, remote), socket.SOCK_STREAM, socket.IPPROTO_TCP)
        except OSError as exc:
            raise TProxyError("dial", f"socket open: {exc}") from exc

        with _failing_step(out, "dial", "set socket option: SO_REUSEADDR"):
            out.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        with _failing_step(out, "dial", "set socket option: IP_TRANSPARENT"):
            out.setsockopt(SOL_IP, IP_TRANSPARENT, 1)
        with _failing_step(out, "dial", "set socket option: SO_NONBLOCK"):
            out.setblocking(False)
        if not dont_assume_remote:
            with _failing_step(out, "dial", "socket bind"):
                out.bind(source)
        with _failing_step(out, "dial", "socket connect"):
            try:
                out.connect(destination)
            except BlockingIOError as exc:
                if exc.errno != errno.EINPROGRESS:
                    raise
        # Blocking I/O waits for the handshake to finish.
        out.setblocking(True)
        return out

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Listener:
    """A TCP listening socket with IP_TRANSPARENT set."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock

    def accept(self) -> Connection:
        """Wait for and return the next connection."""
        conn, _ = self.sock.accept()
        return Connection(conn)

    def address(self) -> Endpoint:
        return Endpoint.from_sockaddr(self.sock.getsockname())

    def close(self) -> None:
        self.sock.close()

    def fileno(self) -> int:
        return self.sock.fileno()

    def __enter__(self) -> "Listener":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def listen_tcp(network, endpoint) -> Listener:
    """Listen on ``endpoint`` with IP_TRANSPARENT set; network is tcp, tcp4 or tcp6."""
    sock = _listening_socket(network, endpoint, "tcp", socket.SOCK_STREAM, reuse_address=True)
    with _failing_step(sock, "listen", "listen", network, endpoint):
        sock.listen(socket.SOMAXCONN)
    with _failing_step(sock, "listen", "set socket option: IP_TRANSPARENT", network, endpoint):
        sock.setsockopt(SOL_IP, IP_TRANSPARENT, 1)
    return Listener(sock)