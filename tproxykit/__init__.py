"""Transparent proxy (IP_TRANSPARENT) sockets for TCP and UDP on Linux, with an example relay."""

__version__ = "0.1.0"
__all__ = ["addresses", "tcp", "udp", "example"]