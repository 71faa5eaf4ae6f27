import errno
import ipaddress
import socket
from unittest.mock import patch

import pytest

from tproxykit.addresses import IP_TRANSPARENT, SOL_IP, Endpoint, TProxyError
from tproxykit.tcp import listen_tcp

_REAL_SETSOCKOPT = socket.socket.setsockopt


def _fake_setsockopt(refuse):
    def setsockopt(self, level, option, *value):
        if level == SOL_IP and option == IP_TRANSPARENT:
            if refuse:
                raise PermissionError(errno.EPERM, "Operation not permitted")
            return None
        return _REAL_SETSOCKOPT(self, level, option, *value)

    return setsockopt


def _transparent(refuse):
    return patch.object(socket.socket, "setsockopt", _fake_setsockopt(refuse))


@pytest.fixture
def listener():
    with _transparent(False):
        lst = listen_tcp("tcp", Endpoint("127.0.0.1", 0))
        lst.sock.settimeout(5)
        yield lst
        lst.close()


@pytest.fixture
def accepted(listener):
    client = socket.create_connection(listener.address().sockaddr(), timeout=5)
    conn = listener.accept()
    yield client, conn
    conn.close()
    client.close()


def test_listener_address_is_loopback(listener):
    address = listener.address()
    assert address.ip == ipaddress.ip_address("127.0.0.1")
    assert address.port > 0
    assert listener.fileno() == listener.sock.fileno()


def test_accept_reports_both_endpoints(listener, accepted):
    client, conn = accepted
    assert conn.local_endpoint() == listener.address()
    assert conn.remote_endpoint() == Endpoint.from_sockaddr(client.getsockname())


def test_dial_original_destination_reaches_listener(listener, accepted):
    _, conn = accepted
    out = conn.dial_original_destination(True)
    try:
        assert out.gettimeout() is None
        out.settimeout(5)
        out.sendall(b"ping")
        second = listener.accept()
        with second:
            assert second.sock.recv(4) == b"ping"
        assert Endpoint.from_sockaddr(out.getpeername()) == listener.address()
    finally:
        out.close()


def test_dial_reports_refused_transparent_option(listener, accepted):
    _, conn = accepted
    with _transparent(True):
        with pytest.raises(TProxyError) as info:
            conn.dial_original_destination(False)
    assert info.value.op == "dial"
    assert "set socket option: IP_TRANSPARENT" in str(info.value)


def test_connection_close_ends_stream(accepted):
    client, conn = accepted
    conn.close()
    assert client.recv(1) == b""


def test_listen_reports_refused_transparent_option():
    with _transparent(True):
        with pytest.raises(TProxyError) as info:
            listen_tcp("tcp", Endpoint("127.0.0.1", 0))
    assert info.value.op == "listen"
    assert info.value.network == "tcp"
    assert "IP_TRANSPARENT" in str(info.value)


def test_listen_rejects_unknown_network():
    with pytest.raises(TProxyError, match="unknown network sctp"):
        listen_tcp("sctp", Endpoint("127.0.0.1", 0))


def test_closed_listener_cannot_accept(listener):
    listener.close()
    assert listener.fileno() == -1
    with pytest.raises(OSError):
        listener.accept()