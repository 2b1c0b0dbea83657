#!/usr/bin/env python3
"""
SNTP Server - answers client requests with the local system time
Listens on UDP port 123 and hands every datagram to sntp_protocol
"""

import argparse
import logging
import socket
import sys
import threading
import time
from dataclasses import dataclass, field

from sntp_protocol import (
    InvalidFormat,
    MalformedRequest,
    validate_and_build,
)

logger = logging.getLogger(__name__)

# --- Configuration ---
LISTEN_HOST = '0.0.0.0'    # IP to listen on (0.0.0.0 = all)
NTP_PORT = 123             # standard NTP port, needs privileges on most systems
RECV_BUFFER_SIZE = 1024
STATUS_HOST = '127.0.0.1'  # dashboard bind address


class TransportError(OSError):
    """Base class for datagram transport failures."""


class SetupError(TransportError):
    """Address resolution or bind failed; the server cannot start."""


class ReceiveError(TransportError):
    """Reading a datagram failed."""


class SendError(TransportError):
    """Writing a datagram failed."""


class DatagramTransport:
    """Receive/send capability used by SNTPServer."""

    def receive(self):
        """Block until a datagram arrives and return (data, address)."""
        raise NotImplementedError

    def send(self, data: bytes, address) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class UdpTransport(DatagramTransport):
    """IPv4 UDP socket bound to host:port."""

    def __init__(self, host=LISTEN_HOST, port=NTP_PORT, buffer_size=RECV_BUFFER_SIZE):
        self.buffer_size = buffer_size
        if not 0 <= port <= 65535:
            raise SetupError(f"port {port} outside 0..65535")
        try:
            infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
        except socket.gaierror as e:
            raise SetupError(f"cannot resolve {host}:{port}: {e}") from e
        if not infos:
            raise SetupError(f"cannot resolve {host}:{port}")
        family, socktype, proto, _canonname, sockaddr = infos[0]

        try:
            self.socket = socket.socket(family, socktype, proto)
        except OSError as e:
            raise SetupError(f"cannot create socket: {e}") from e
        try:
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.socket.bind(sockaddr)
        except OSError as e:
            self.socket.close()
            raise SetupError(f"cannot bind {host}:{port}: {e}") from e

    @property
    def address(self):
        return self.socket.getsockname()

    def receive(self):
        try:
            data, addr = self.socket.recvfrom(self.buffer_size)
        except OSError as e:
            raise ReceiveError(str(e)) from e
        if addr is None:
            # recvfrom returns no sender once the socket has been shut down
            raise ReceiveError("socket shut down")
        return data, addr

    def send(self, data, address):
        try:
            self.socket.sendto(data, address)
        except OSError as e:
            raise SendError(str(e)) from e

    def close(self):
        # shutdown() wakes a thread blocked in recvfrom; close() alone does not on Linux.
        # Unconnected UDP sockets report ENOTCONN here after waking the reader.
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.socket.close()


@dataclass
class ServerStats:
    """Counters shown on the status dashboard."""
    requests_received: int = 0
    responses_sent: int = 0
    malformed: int = 0
    invalid_format: int = 0
    receive_errors: int = 0
    send_errors: int = 0
    last_client: str = ''
    last_request_time: float = 0.0
    started_at: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, name, client=None):
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)
            if client is not None:
                self.last_client = f"{client[0]}:{client[1]}"
                self.last_request_time = time.time()

    def snapshot(self):
        with self._lock:
            return {
                'requests_received': self.requests_received,
                'responses_sent': self.responses_sent,
                'malformed': self.malformed,
                'invalid_format': self.invalid_format,
                'receive_errors': self.receive_errors,
                'send_errors': self.send_errors,
                'last_client': self.last_client,
                'last_request_time': self.last_request_time,
                'uptime_seconds': round(time.time() - self.started_at, 1),
            }


class SNTPServer:
    def __init__(self, transport: DatagramTransport, clock=time.time_ns, threaded=False, stats=None):
        self.transport = transport
        self.clock = clock
        self.threaded = threaded
        self.stats = stats if stats is not None else ServerStats()
        self.running = False
        self._stop_requested = threading.Event()

    def handle_request(self, data, addr):
        """Answer one datagram, or drop it if the protocol layer rejects it"""
        self.stats.increment('requests_received', client=addr)
        try:
            response = validate_and_build(data, self.clock)
        except MalformedRequest as e:
            self.stats.increment('malformed')
            logger.debug("Dropped malformed request from %s:%s: %s", addr[0], addr[1], e)
            return
        except InvalidFormat as e:
            self.stats.increment('invalid_format')
            logger.debug("Dropped invalid request from %s:%s: %s", addr[0], addr[1], e)
            return

        try:
            self.transport.send(response, addr)
        except SendError as e:
            self.stats.increment('send_errors')
            logger.warning("Send to %s:%s failed: %s", addr[0], addr[1], e)
            return
        self.stats.increment('responses_sent')
        logger.debug("Served time to %s:%s", addr[0], addr[1])

    def handle_one(self):
        """Receive a single datagram and dispatch it"""
        try:
            data, addr = self.transport.receive()
        except ReceiveError as e:
            if not self._stop_requested.is_set():
                self.stats.increment('receive_errors')
                logger.warning("Receive failed: %s", e)
            return

        if self.threaded:
            # Each request is self-contained, so no ordering is kept between threads
            thread = threading.Thread(target=self.handle_request, args=(data, addr))
            thread.daemon = True
            thread.start()
        else:
            self.handle_request(data, addr)

    def serve_forever(self):
        """Serve until stop() is called; returns at once if stop() already ran"""
        if self._stop_requested.is_set():
            return
        self.running = True
        logger.info("SNTP server started on %s", _format_address(self.transport))
        while not self._stop_requested.is_set():
            self.handle_one()
        self.running = False

    def stop(self):
        """Stop the SNTP server"""
        was_running = self.running
        self._stop_requested.set()
        self.running = False
        self.transport.close()
        if was_running:
            logger.info("SNTP server stopped")


def _format_address(transport):
    try:
        address = getattr(transport, 'address', None)
    except OSError:
        address = None
    if address is None:
        return type(transport).__name__
    return f"{address[0]}:{address[1]}"


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Simple Network Time Protocol server")
    p.add_argument('--host', default=LISTEN_HOST, help="address to listen on")
    p.add_argument('--port', type=int, default=NTP_PORT, help="UDP port to listen on")
    p.add_argument('--status-host', default=STATUS_HOST, help="dashboard bind address")
    p.add_argument('--status-port', type=int, default=None,
                   help="serve the HTTP status dashboard on this port")
    p.add_argument('--threaded', action='store_true',
                   help="handle each request in its own thread")
    p.add_argument('--log-level', default='INFO',
                   choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    return p.parse_args(argv)


def _setup_logging(level):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv=None):
    args = parse_args(argv)
    _setup_logging(args.log_level)

    try:
        transport = UdpTransport(args.host, args.port)
    except SetupError as e:
        logger.error("Failed to start server: %s", e)
        if isinstance(e.__cause__, PermissionError):
            logger.error("Port %s requires admin privileges; try --port 12300", args.port)
        return 1

    server = SNTPServer(transport, threaded=args.threaded)
    try:
        if args.status_port is None:
            server.serve_forever()
        else:
            # Waitress owns the main thread; UDP serving runs in a daemon thread
            from sntp_dashboard import run_dashboard

            listener = threading.Thread(target=server.serve_forever, daemon=True)
            listener.start()
            run_dashboard(server.stats, host=args.status_host, port=args.status_port)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
