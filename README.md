# tproxykit

Sockets for building transparent proxies on Linux with the `IP_TRANSPARENT`
socket option (the kernel's TPROXY target).

A transparent proxy receives traffic that firewall rules sent to it. It can
connect on to the address the client was originally trying to reach, and it
can use the client's own address as the source of that connection.

## Requirements

- Linux
- Python 3.10 or later
- `CAP_NET_ADMIN`, usually by running as root, because `IP_TRANSPARENT` needs it
- Firewall and routing rules that send traffic to the proxy with TPROXY

The package does not create those firewall or routing rules. You set them up
yourself.

## Endpoints and errors

`tproxykit.addresses.Endpoint` holds an IP address, a port and an optional
IPv6 zone:

```python
from tproxykit.addresses import Endpoint

Endpoint("0.0.0.0", 8080)
Endpoint("fe80::1", 53, "2")  # zone is a decimal interface index
```

`Endpoint.sockaddr()` returns the tuple that `socket.bind`/`connect` take.
For an IPv6 endpoint (not an IPv4-mapped one) the zone must be a decimal
32-bit number such as `"0"`. Any other zone, including an empty one, raises
`ValueError`. `Endpoint.is_ipv4()` is true for IPv4 and IPv4-mapped
addresses. `address_family(network, local, remote)` returns `AF_INET` or
`AF_INET6`. A network name ending in `4` or `6` decides it. Otherwise the
endpoints decide it.

Failures raise `tproxykit.addresses.TProxyError`, a subclass of `OSError`.
It has these attributes:

- `op`: `"listen"` or `"dial"`
- `message`: a description of the step that failed
- `network`
- `address`

## TCP

```python
from tproxykit.addresses import Endpoint
from tproxykit.tcp import listen_tcp

with listen_tcp("tcp", Endpoint("0.0.0.0", 8080)) as listener:
    with listener.accept() as conn:
        print(conn.remote_endpoint(), "->", conn.local_endpoint())
        upstream = conn.dial_original_destination(False)  # source is the client's address
        upstream.close()
```

`listen_tcp` accepts the networks `tcp`, `tcp4` and `tcp6`. The returned
`Listener` has these methods:

- `accept()` returns a `Connection`.
- `address()`
- `close()`
- `fileno()`

`Connection.local_endpoint()` is the address the client was trying to
reach. `Connection.remote_endpoint()` is the client. `Connection.sock` is the
underlying socket.

`dial_original_destination(True)` lets the kernel choose the source address
and port. With `False`, the outgoing connection uses the client's address
and port. The returned socket is a plain blocking `socket.socket`.

## UDP

```python
from tproxykit.addresses import Endpoint
from tproxykit.udp import dial_udp, listen_udp, read_from_udp

sock = listen_udp("udp", Endpoint("0.0.0.0", 8080))
data, source, destination = read_from_udp(sock, 1024)
upstream = dial_udp("udp", source, destination)
upstream.send(data)
```

`listen_udp` accepts `udp`, `udp4` and `udp6`. It sets both `IP_TRANSPARENT`
and `IP_RECVORIGDSTADDR`.

`read_from_udp(sock, bufsize=65535)` returns three values:

- the payload bytes
- the sender's `Endpoint`
- the packet's original destination, taken from the ancillary data

`parse_original_destination(ancillary)` decodes a list of
`(level, type, data)` control messages on its own. It raises `ValueError`
when none of them holds the original destination.

`dial_udp(network, local, remote)` returns a UDP socket that is bound to
`local` (which may be a foreign address) and connected to `remote`.

## Example proxy

`tproxykit.example` is a small relay. Start it with:

```
tproxykit-example [--address 0.0.0.0] [--port 8080]
```

It listens for both TCP and UDP on the given address. The default address is
`0.0.0.0:8080`.

- TCP: each accepted connection is dialled on to its original destination
  with the client's address as the source. Data is then copied both ways
  until each side ends.
- UDP: each packet is sent on to its original destination as the sender.
  At most one reply, received within 2 seconds, goes back to the sender.

Stop it with Ctrl-C. If a listener fails, the command exits with status 1.

The building blocks are available to your own code:

- `handle_tcp_connection(conn)`
- `handle_udp_packet(data, source, destination)`
- `serve_tcp(listener)` and `serve_udp(sock)`: these loop forever, run a
  thread per connection or packet, and log and raise the first error.
- `main(argv=None)`