"""A transparent proxy that relays intercepted TCP connections and UDP packets."""

from __future__ import annotations

import argparse
import logging
import socket
import threading
from contextlib import ExitStack

from .addresses import Endpoint, TProxyError
from .tcp import Connection, listen_tcp
from .udp import dial_udp, listen_udp, read_from_udp

logger = logging.getLogger(__name__)

_BUFFER_SIZE = 1024
_UDP_REPLY_TIMEOUT = 2.0
_DEFAULT_ADDRESS = "0.0.0.0"
_DEFAULT_PORT = 8080


def _stream(dst: socket.socket, src: socket.socket) -> None:
    """Copy bytes from ``src`` to ``dst`` until ``src`` reaches end of stream or fails."""
    try:
        while chunk := src.recv(32 * 1024):
            dst.sendall(chunk)
    except OSError:
        pass


def handle_tcp_connection(conn: Connection) -> None:
    """Dial the connection's original destination as the client and relay both ways."""
    try:
        destination = conn.local_endpoint()
        logger.info(
            "Accepting TCP connection from %s with destination of %s",
            conn.remote_endpoint(),
            destination,
        )
        try:
            remote = conn.dial_original_destination(False)
        except TProxyError as exc:
            logger.info("Failed to connect to original destination [%s]: %s", destination, exc)
            return
        with remote:
            streams = [
                threading.Thread(target=_stream, args=(remote, conn.sock), daemon=True),
                threading.Thread(target=_stream, args=(conn.sock, remote), daemon=True),
            ]
            for stream in streams:
                stream.start()
            for stream in streams:
                stream.join()
    finally:
        conn.close()


def handle_udp_packet(data: bytes, source: Endpoint, destination: Endpoint) -> None:
    """Forward ``data`` to its original destination as the sender and relay one reply back."""
    logger.info("Accepting UDP connection from %s with destination of %s", source, destination)

    try:
        local = dial_udp("udp", destination, source)
    except TProxyError as exc:
        logger.info("Failed to connect to original UDP source [%s]: %s", source, exc)
        return

    with local:
        try:
            remote = dial_udp("udp", source, destination)
        except TProxyError as exc:
            logger.info("Failed to connect to original UDP destination [%s]: %s", destination, exc)
            return

        with remote:
            try:
                written = remote.send(data)
            except OSError as exc:
                logger.info("Encountered error while writing to remote [%s]: %s", destination, exc)
                return
            if written < len(data):
                logger.info(
                    "Not all bytes [%d < %d] in buffer written to remote [%s]",
                    written,
                    len(data),
                    destination,
                )
                return

            # A deadline keeps the handler from waiting forever on a silent peer.
            remote.settimeout(_UDP_REPLY_TIMEOUT)
            try:
                reply = remote.recv(_BUFFER_SIZE)
            except socket.timeout:
                return
            except OSError as exc:
                logger.info("Encountered error while reading from remote [%s]: %s", destination, exc)
                return

            try:
                written = local.send(reply)
            except OSError as exc:
                logger.info("Encountered error while writing to local [%s]: %s", source, exc)
                return
            if written < len(reply):
                logger.info(
                    "Not all bytes [%d < %d] in buffer written to local [%s]",
                    written,
                    len(reply),
                    source,
                )


def serve_tcp(listener) -> None:
    """Accept connections forever, handling each in its own thread.

    An error from ``accept`` is logged and raised.
    """
    while True:
        try:
            conn = listener.accept()
        except OSError as exc:
            logger.error("Unrecoverable error while accepting connection: %s", exc)
            raise
        threading.Thread(target=handle_tcp_connection, args=(conn,), daemon=True).start()


def serve_udp(sock) -> None:
    """Read intercepted packets forever, handling each in its own thread.

    An error while reading a packet or its original destination is logged and raised.
    """
    while True:
        try:
            data, source, destination = read_from_udp(sock, _BUFFER_SIZE)
        except (OSError, ValueError) as exc:
            logger.error("Unrecoverable error while reading data: %s", exc)
            raise
        logger.info("Accepting UDP connection from %s with destination of %s", source, destination)
        threading.Thread(
            target=handle_udp_packet, args=(data, source, destination), daemon=True
        ).start()


def _run_until_failure(server, resource, failed: threading.Event) -> None:
    try:
        server(resource)
    except Exception:
        failed.set()


def _parse_args(argv):
    parser = argparse.ArgumentParser(
        prog="tproxykit",
        description="Relay TCP connections and UDP packets intercepted by TPROXY rules.",
    )
    parser.add_argument("--address", default=_DEFAULT_ADDRESS, help="address to listen on")
    parser.add_argument("--port", type=int, default=_DEFAULT_PORT, help="port to listen on")
    args = parser.parse_args(argv)
    try:
        endpoint = Endpoint(args.address, args.port)
    except ValueError as exc:
        parser.error(f"invalid address {args.address!r}: {exc}")
    return endpoint


def main(argv=None) -> int:
    """Run the relay until interrupted; return the process exit status."""
    endpoint = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    logger.info("Starting TProxy example")

    failed = threading.Event()
    with ExitStack() as stack:
        logger.info("Binding TCP TProxy listener to %s", endpoint)
        try:
            tcp_listener = listen_tcp("tcp", endpoint)
        except OSError as exc:
            logger.error("Encountered error while binding listener: %s", exc)
            return 1
        stack.callback(tcp_listener.close)
        threading.Thread(
            target=_run_until_failure, args=(serve_tcp, tcp_listener, failed), daemon=True
        ).start()

        logger.info("Binding UDP TProxy listener to %s", endpoint)
        try:
            udp_socket = listen_udp("udp", endpoint)
        except OSError as exc:
            logger.error("Encountered error while binding UDP listener: %s", exc)
            return 1
        stack.callback(udp_socket.close)
        threading.Thread(
            target=_run_until_failure, args=(serve_udp, udp_socket, failed), daemon=True
        ).start()

        try:
            while not failed.wait(1.0):
                pass
        except KeyboardInterrupt:
            logger.info("TProxy listener closing")
            return 0
    return 1