"""Loopback NTP responder - answers mode 3 and mode 6 requests for tests and smoke checks."""

import logging
import socket
import struct
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Callable, Tuple

from .protocol import (
    ClientPacket, ControlPacket, Mode,
    CLIENT_PACKET_SIZE, CONTROL_MIN_RESPONSE, CONTROL_PACKET_SIZE,
    build_control_response, to_ntp_seconds
)

logger = logging.getLogger(__name__)

DEFAULT_PEER_ID = 4242


@dataclass
class ResponderConfig:
    """What the responder reports and which faults it injects."""
    stratum: int = 2
    precision: int = -20
    ref_id: bytes = b'\xc0\xa8\x01\x01'
    clock_offset: int = 0
    system_variables: str = (
        f'version="ntpd 4.2.8p15", precision=-20, peer={DEFAULT_PEER_ID}, '
        'system="Linux", stratum=2, rootdelay=1.250, '
        'rootdispersion=7.500, refid=192.168.1.1\r\n'
    )
    peer_variables: Dict[int, str] = field(default_factory=lambda: {
        DEFAULT_PEER_ID: (
            'srcadr=192.168.1.1, stratum=1, precision=-23, reach=377, '
            'valid=8, delay=0.412, offset=-0.031, dispersion=0.950\r\n'
        )
    })
    drop_first: int = 0
    stale_first: bool = False
    short_first: bool = False
    answer_peer: bool = True
    reply_mode: int = Mode.SERVER


class NtpResponder:
    """UDP server that answers NTP client and control requests."""

    def __init__(self,
                 host: str = '127.0.0.1',
                 port: int = 0,
                 config: Optional[ResponderConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.host = host
        self.port = port
        self.config = config or ResponderConfig()

        self._clock = clock
        self._socket: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self._on_request: Optional[Callable] = None

        self._requests_seen = 0
        self._requests_answered = 0
        self._requests_dropped = 0

    def set_on_request(self, callback: Callable):
        self._on_request = callback

    def start(self):
        if self._running:
            return

        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._socket.bind((self.host, self.port))
        self._socket.settimeout(0.1)
        self.port = self._socket.getsockname()[1]

        self._running = True
        self._thread = threading.Thread(target=self._receive_loop, daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False

        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None

        if self._socket:
            self._socket.close()
            self._socket = None

    def _receive_loop(self):
        while self._running:
            try:
                data, addr = self._socket.recvfrom(CONTROL_PACKET_SIZE)
            except socket.timeout:
                continue
            except OSError:
                if self._running:
                    logger.exception("responder receive failed")
                break
            self._handle_packet(data, addr)

    def _handle_packet(self, data: bytes, addr: tuple):
        with self._lock:
            self._requests_seen += 1
            seen = self._requests_seen

        if self._on_request:
            self._on_request(data, addr)

        if seen <= self.config.drop_first:
            with self._lock:
                self._requests_dropped += 1
            return

        if not data:
            return

        mode = data[0] & 0x07
        if mode == Mode.CLIENT and len(data) >= CLIENT_PACKET_SIZE:
            replies = self._answer_client(ClientPacket.unpack(data))
        elif mode == Mode.CONTROL and len(data) >= CONTROL_MIN_RESPONSE:
            replies = self._answer_control(ControlPacket.unpack(data))
        else:
            replies = []

        for reply in replies:
            self._socket.sendto(reply, addr)

        if replies:
            with self._lock:
                self._requests_answered += 1

    def _answer_client(self, request: ClientPacket) -> list:
        now = int(self._clock()) + self.config.clock_offset
        reply = ClientPacket(
            li_vn_mode=(request.version << 3) | self.config.reply_mode,
            stratum=self.config.stratum,
            precision=self.config.precision,
            ref_id=struct.unpack('>I', self.config.ref_id[:4])[0],
            ref_ts_sec=to_ntp_seconds(now),
            orig_ts_sec=request.xmit_ts_sec,
            orig_ts_frac=request.xmit_ts_frac,
            recv_ts_sec=to_ntp_seconds(now),
            xmit_ts_sec=to_ntp_seconds(now)
        )
        replies = [reply.pack()]
        if self.config.short_first:
            replies.insert(0, reply.pack()[:CLIENT_PACKET_SIZE - 1])
        return replies

    def _answer_control(self, request: ControlPacket) -> list:
        if request.association_id == 0:
            text = self.config.system_variables
        elif self.config.answer_peer and request.association_id in self.config.peer_variables:
            text = self.config.peer_variables[request.association_id]
        else:
            return []

        replies = [build_control_response(request, text)]
        if self.config.stale_first:
            stale = ControlPacket(
                version_mode=request.version_mode,
                op=request.op,
                sequence=(request.sequence - 1) & 0xFFFF,
                association_id=request.association_id
            )
            replies.insert(0, build_control_response(stale, 'stale=1'))
        if self.config.short_first:
            replies.insert(0, replies[-1][:CONTROL_MIN_RESPONSE - 1])
        return replies

    @property
    def address(self) -> Tuple[str, int]:
        return self.host, self.port

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'seen': self._requests_seen,
                'answered': self._requests_answered,
                'dropped': self._requests_dropped,
            }

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
