import socket

import pytest

from tproxykit.addresses import Endpoint, TProxyError, address_family


def test_ipv4_sockaddr():
    assert Endpoint("192.0.2.1", 80).sockaddr() == ("192.0.2.1", 80)


def test_ipv4_mapped_address_counts_as_ipv4():
    endpoint = Endpoint("::ffff:192.0.2.1", 80)
    assert endpoint.is_ipv4()
    assert endpoint.sockaddr() == ("192.0.2.1", 80)


def test_ipv6_is_not_ipv4():
    assert not Endpoint("2001:db8::1", 443, "3").is_ipv4()


def test_ipv6_sockaddr_uses_zone_as_scope():
    assert Endpoint("2001:db8::1", 443, "3").sockaddr() == ("2001:db8::1", 443, 0, 3)


def test_largest_zone_is_accepted():
    assert Endpoint("2001:db8::1", 1, "4294967295").sockaddr()[3] == 4294967295


@pytest.mark.parametrize("zone", ["", "eth0", "+1", " 1", "4294967296"])
def test_ipv6_sockaddr_rejects_bad_zone(zone):
    with pytest.raises(ValueError):
        Endpoint("2001:db8::1", 443, zone).sockaddr()


def test_string_forms():
    assert str(Endpoint("192.0.2.1", 80)) == "192.0.2.1:80"
    assert str(Endpoint("2001:db8::1", 443)) == "[2001:db8::1]:443"
    assert str(Endpoint("2001:db8::1", 443, "3")) == "[2001:db8::1%3]:443"


def test_mapped_address_prints_as_ipv4():
    assert str(Endpoint("::ffff:192.0.2.1", 80)) == str(Endpoint("192.0.2.1", 80))


def test_from_ipv4_sockaddr():
    assert Endpoint.from_sockaddr(("198.51.100.7", 9)) == Endpoint("198.51.100.7", 9)


def test_from_ipv6_sockaddr_strips_scope_suffix():
    endpoint = Endpoint.from_sockaddr(("fe80::1%lo", 5353, 0, 1))
    assert endpoint == Endpoint("fe80::1", 5353, "1")


def test_from_ipv6_sockaddr_without_scope_has_no_zone():
    assert Endpoint.from_sockaddr(("2001:db8::5", 53, 0, 0)).zone == ""


def test_sockaddr_round_trip():
    original = Endpoint("2001:db8::9", 8080, "7")
    assert Endpoint.from_sockaddr(original.sockaddr()) == original


@pytest.mark.parametrize(
    "network, expected",
    [("tcp4", socket.AF_INET), ("udp4", socket.AF_INET), ("tcp6", socket.AF_INET6), ("udp6", socket.AF_INET6)],
)
def test_family_from_network_suffix(network, expected):
    assert address_family(network, Endpoint("2001:db8::1", 1), None) == expected


def test_family_from_ipv4_endpoints():
    family = address_family("tcp", Endpoint("192.0.2.1", 1), Endpoint("192.0.2.2", 2))
    assert family == socket.AF_INET


def test_family_without_endpoints_is_ipv4():
    assert address_family("udp", None, None) == socket.AF_INET


def test_family_from_ipv6_endpoints():
    family = address_family("tcp", Endpoint("2001:db8::1", 1), Endpoint("2001:db8::2", 2))
    assert family == socket.AF_INET6


def test_family_of_empty_network_is_an_error():
    with pytest.raises(ValueError):
        address_family("", None, None)


def test_error_without_network():
    err = TProxyError("dial", "socket open: boom")
    assert str(err) == "dial: socket open: boom"
    assert err.op == "dial"
    assert isinstance(err, OSError)


def test_error_with_network_and_address():
    err = TProxyError("listen", "x", "tcp", Endpoint("127.0.0.1", 8080))
    assert str(err) == "listen tcp 127.0.0.1:8080: x"
    assert err.network == "tcp"
    assert err.address == Endpoint("127.0.0.1", 8080)