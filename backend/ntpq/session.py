"""UDP socket session shared by all NTP queries."""

import logging
import select
import socket
import threading
from typing import Optional, Tuple

from .errors import SocketError, SendError, ReceiveError
from .protocol import CONTROL_PACKET_SIZE, now_ms

logger = logging.getLogger(__name__)


class SocketSession:
    """
    One UDP socket plus the control mode sequence counter.

    A logical query holds ``lock`` for its whole run, retries and peer
    follow-up included. The socket is bound lazily and dropped after any
    transport error so the next query starts with a fresh one.
    """

    def __init__(self, bind_host: str = ''):
        self.bind_host = bind_host
        self.lock = threading.Lock()

        self._socket: Optional[socket.socket] = None
        self._sequence = 1

    def ensure_open(self) -> socket.socket:
        if self._socket is not None:
            return self._socket

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise SocketError(f"could not create socket: {e}") from e

        try:
            sock.bind((self.bind_host, 0))
        except OSError as e:
            sock.close()
            raise SocketError(f"can not bind socket: {e}") from e

        logger.debug("bound ntp socket to %s", sock.getsockname())
        self._socket = sock
        return sock

    def next_sequence(self) -> int:
        """Advance the 16-bit sequence counter; caller must hold ``lock``."""
        self._sequence = (self._sequence + 1) & 0xFFFF
        return self._sequence

    @property
    def sequence(self) -> int:
        return self._sequence

    def send(self, data: bytes, destination: Tuple[str, int]):
        sock = self.ensure_open()
        try:
            sock.sendto(data, destination)
        except OSError as e:
            self.close()
            raise SendError(f"udp sendto failed: {e}") from e

    def wait_readable(self, timeout_ms: int) -> bool:
        """
        Wait up to timeout_ms for a datagram.

        An interrupted wait resumes with the time that is left. Any other
        error counts as a timeout: unreachable hosts show up here on some
        platforms instead of in recvfrom.
        """
        sock = self.ensure_open()
        deadline = now_ms() + max(0, timeout_ms)
        remaining = max(0, timeout_ms)

        while True:
            try:
                readable, _, _ = select.select([sock], [], [], remaining / 1000.0)
                return bool(readable)
            except InterruptedError:
                remaining = max(0, deadline - now_ms())
                continue
            except (OSError, ValueError) as e:
                logger.debug("select failed, treating as timeout: %s", e)
                return False

    def receive(self, size: int = CONTROL_PACKET_SIZE) -> Tuple[bytes, Tuple[str, int]]:
        sock = self.ensure_open()
        try:
            data, addr = sock.recvfrom(size)
        except OSError as e:
            self.close()
            raise ReceiveError(f"recvfrom failed: {e}") from e
        return data, addr[:2]

    def close(self):
        if self._socket is not None:
            try:
                self._socket.close()
            finally:
                self._socket = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        if self._socket is None:
            return None
        return self._socket.getsockname()

    def __enter__(self):
        self.ensure_open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
