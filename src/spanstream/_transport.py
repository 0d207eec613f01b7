"""UDP transports, including one that follows its destination's DNS record."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable
from types import TracebackType
from typing import Protocol

from spanstream._errors import NotConnectedError

logger = logging.getLogger("spanstream.transport")

# Largest payload that fits a UDP datagram with room for headers.
UDP_PACKET_MAX_LENGTH = 65000

Address = tuple[str, int]
Resolver = Callable[[str], Address]
Dialer = Callable[[Address], socket.socket]


class PacketConnection(Protocol):
    """Minimal packet transport used by the uploader."""

    def write(self, data: bytes) -> int: ...

    def set_write_buffer(self, size: int) -> None: ...

    def close(self) -> None: ...


def split_host_port(host_port: str) -> Address:
    """Split ``host:port`` or ``[v6-host]:port``."""
    host, sep, port = host_port.rpartition(":")
    if not sep or not host:
        raise ValueError(f"missing port in address {host_port!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


def resolve_udp_addr(host_port: str) -> Address:
    """Resolve ``host_port`` to the first UDP address the system returns."""
    host, port = split_host_port(host_port)
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"no addresses found for {host_port!r}")
    sockaddr = infos[0][4]
    return str(sockaddr[0]), int(sockaddr[1])


def dial_udp(addr: Address) -> socket.socket:
    """Open a UDP socket connected to ``addr``."""
    family = socket.AF_INET6 if ":" in addr[0] else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        sock.connect(addr)
    except OSError:
        sock.close()
        raise
    return sock


def _set_send_buffer(sock: socket.socket, size: int) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_SNDBUF, size)


class UDPConnection:
    """A UDP socket dialed once at construction. Errors are raised."""

    def __init__(
        self,
        host_port: str,
        *,
        resolver: Resolver = resolve_udp_addr,
        dialer: Dialer = dial_udp,
    ) -> None:
        self.dest_addr = resolver(host_port)
        self._sock: socket.socket | None = dialer(self.dest_addr)

    def write(self, data: bytes) -> int:
        if self._sock is None:
            raise NotConnectedError("connection is closed")
        return self._sock.send(data)

    def set_write_buffer(self, size: int) -> None:
        if self._sock is not None:
            _set_send_buffer(self._sock, size)

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None


class ReconnectingUDPConnection:
    """UDP connection that re-resolves its host on a timer.

    When the resolved address changes, a new socket is dialed and swapped in
    under the lock; the previous socket is closed only after the swap.
    Sends hold the same lock, so a socket is never closed mid-send.

    Resolve and dial failures never escape the constructor or the background
    loop. They are logged and retried on the next tick.
    """

    def __init__(
        self,
        host_port: str,
        max_packet_size: int = UDP_PACKET_MAX_LENGTH,
        resolve_interval_s: float = 30.0,
        *,
        resolver: Resolver = resolve_udp_addr,
        dialer: Dialer = dial_udp,
    ) -> None:
        self._host_port = host_port
        self._resolve_interval_s = resolve_interval_s
        self._resolver = resolver
        self._dialer = dialer

        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._dest_addr: Address | None = None
        self._buffer_bytes: int | None = max_packet_size
        self._closed = False
        self._stop_event = threading.Event()

        try:
            self._attempt_resolve_and_dial()
        except (OSError, ValueError):
            logger.debug("Initial resolve of %s failed", host_port, exc_info=True)

        self._thread = threading.Thread(
            target=self._run, name="spanstream-udp-resolver", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self._resolve_interval_s):
            try:
                self._attempt_resolve_and_dial()
            except (OSError, ValueError):
                logger.debug("Re-resolve of %s failed", self._host_port, exc_info=True)

    def _attempt_resolve_and_dial(self) -> None:
        addr = self._resolver(self._host_port)
        with self._lock:
            if self._sock is not None and addr == self._dest_addr:
                return
        self._attempt_dial(addr)

    def _attempt_dial(self, addr: Address) -> None:
        sock = self._dialer(addr)
        with self._lock:
            if self._closed:
                sock.close()
                return
            if self._buffer_bytes is not None:
                try:
                    _set_send_buffer(sock, self._buffer_bytes)
                except OSError:
                    sock.close()
                    raise
            prev, self._sock = self._sock, sock
            self._dest_addr = addr
        if prev is not None:
            logger.info("Destination %s moved to %s:%d", self._host_port, addr[0], addr[1])
            prev.close()

    def _write_current(self, data: bytes) -> int:
        with self._lock:
            if self._sock is None:
                raise NotConnectedError(
                    f"UDP connection to {self._host_port} not yet established"
                )
            return self._sock.send(data)

    def write(self, data: bytes) -> int:
        """Send one datagram.

        On failure the address is re-resolved once; if that yields a socket
        the send is retried, otherwise the original error is raised.
        """
        try:
            return self._write_current(data)
        except OSError as exc:
            if self._closed:
                raise
            try:
                self._attempt_resolve_and_dial()
            except (OSError, ValueError):
                raise exc from None
        return self._write_current(data)

    def set_write_buffer(self, size: int) -> None:
        """Set SO_SNDBUF on the live socket and on every future one."""
        with self._lock:
            self._buffer_bytes = size
            if self._sock is not None:
                _set_send_buffer(self._sock, size)

    def close(self) -> None:
        """Stop re-resolving and close the socket. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sock, self._sock = self._sock, None
        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join()
        if sock is not None:
            sock.close()

    @property
    def dest_addr(self) -> Address | None:
        with self._lock:
            return self._dest_addr

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    def __enter__(self) -> ReconnectingUDPConnection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
