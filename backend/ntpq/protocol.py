"""NTP wire formats - control mode (mode 6) and client mode (mode 3) packets."""

import struct
import time
from enum import IntEnum
from dataclasses import dataclass
from typing import Optional

from .errors import MalformedPacket

NTP_PORT = 123
NTP_EPOCH_OFFSET = 2208988800

CONTROL_HEADER_FORMAT = '>BBHHHHH'
CONTROL_HEADER_SIZE = 12
CONTROL_DATA_SIZE = 500
CONTROL_PACKET_SIZE = CONTROL_HEADER_SIZE + CONTROL_DATA_SIZE
CONTROL_MIN_RESPONSE = CONTROL_HEADER_SIZE + 1
CONTROL_RESPONSE_BIT = 0x80
CONTROL_VERSION_MODE = 0x18 | 6

CLIENT_PACKET_FORMAT = '>BBBbIII8I'
CLIENT_PACKET_SIZE = 48
CLIENT_LI_VN_MODE = 0x1B

SYSTEM_VARIABLES = "precision,peer,system,stratum,rootdelay,rootdispersion,refid"
PEER_VARIABLES = "srcadr,stratum,precision,reach,valid,delay,offset,dispersion"


def now_ms() -> int:
    """Get current time in milliseconds (monotonic)."""
    return int(time.monotonic() * 1000)


def wall_seconds() -> int:
    """Whole seconds of the unix wall clock."""
    return int(time.time())


class Mode(IntEnum):
    SYMMETRIC_ACTIVE = 1
    SYMMETRIC_PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5
    CONTROL = 6


class ControlOp(IntEnum):
    READVAR = 2


@dataclass
class ControlPacket:
    """Mode 6 control packet: 12-byte header followed by ASCII data."""
    version_mode: int = CONTROL_VERSION_MODE
    op: int = ControlOp.READVAR
    sequence: int = 0
    status: int = 0
    association_id: int = 0
    offset: int = 0
    count: int = 0
    data: bytes = b''

    @property
    def mode(self) -> int:
        return self.version_mode & 0x07

    @property
    def version(self) -> int:
        return (self.version_mode >> 3) & 0x07

    @property
    def is_response(self) -> bool:
        return bool(self.op & CONTROL_RESPONSE_BIT)

    @property
    def text(self) -> str:
        """Payload up to the first NUL byte, decoded as ASCII."""
        raw = self.data.split(b'\0', 1)[0]
        return raw.decode('ascii', errors='replace')

    def pack(self, pad: bool = True) -> bytes:
        header = struct.pack(
            CONTROL_HEADER_FORMAT,
            self.version_mode,
            self.op,
            self.sequence & 0xFFFF,
            self.status,
            self.association_id & 0xFFFF,
            self.offset,
            self.count
        )
        data = self.data[:CONTROL_DATA_SIZE]
        if pad:
            data = data.ljust(CONTROL_DATA_SIZE, b'\0')
        return header + data

    @classmethod
    def unpack(cls, data: bytes) -> 'ControlPacket':
        if len(data) < CONTROL_MIN_RESPONSE:
            raise MalformedPacket(f"Control packet too short: {len(data)} < {CONTROL_MIN_RESPONSE}")

        mode, op, seq, status, assoc, offset, count = struct.unpack(
            CONTROL_HEADER_FORMAT, data[:CONTROL_HEADER_SIZE]
        )

        return cls(
            version_mode=mode,
            op=op,
            sequence=seq,
            status=status,
            association_id=assoc,
            offset=offset,
            count=count,
            data=data[CONTROL_HEADER_SIZE:CONTROL_PACKET_SIZE]
        )


@dataclass
class ClientPacket:
    """Mode 3/4 packet, the fixed 48-byte RFC 5905 layout."""
    li_vn_mode: int = CLIENT_LI_VN_MODE
    stratum: int = 0
    poll: int = 0
    precision: int = 0
    root_delay: int = 0
    root_dispersion: int = 0
    ref_id: int = 0
    ref_ts_sec: int = 0
    ref_ts_frac: int = 0
    orig_ts_sec: int = 0
    orig_ts_frac: int = 0
    recv_ts_sec: int = 0
    recv_ts_frac: int = 0
    xmit_ts_sec: int = 0
    xmit_ts_frac: int = 0

    @property
    def version(self) -> int:
        return (self.li_vn_mode >> 3) & 0x07

    @property
    def mode(self) -> int:
        return self.li_vn_mode & 0x07

    @property
    def ref_id_bytes(self) -> bytes:
        return struct.pack('>I', self.ref_id)

    def pack(self) -> bytes:
        return struct.pack(
            CLIENT_PACKET_FORMAT,
            self.li_vn_mode,
            self.stratum,
            self.poll,
            self.precision,
            self.root_delay,
            self.root_dispersion,
            self.ref_id,
            self.ref_ts_sec,
            self.ref_ts_frac,
            self.orig_ts_sec,
            self.orig_ts_frac,
            self.recv_ts_sec,
            self.recv_ts_frac,
            self.xmit_ts_sec,
            self.xmit_ts_frac
        )

    @classmethod
    def unpack(cls, data: bytes) -> 'ClientPacket':
        if len(data) < CLIENT_PACKET_SIZE:
            raise MalformedPacket(f"Client packet too short: {len(data)} < {CLIENT_PACKET_SIZE}")

        fields = struct.unpack(CLIENT_PACKET_FORMAT, data[:CLIENT_PACKET_SIZE])
        return cls(*fields)


def to_ntp_seconds(unix_seconds: int) -> int:
    return (unix_seconds + NTP_EPOCH_OFFSET) & 0xFFFFFFFF


def build_control_request(op: int, association_id: int, sequence: int) -> bytes:
    """READVAR-style request; the variable list depends on the association."""
    names = SYSTEM_VARIABLES if association_id == 0 else PEER_VARIABLES
    payload = names.encode('ascii')
    packet = ControlPacket(
        op=op,
        sequence=sequence,
        association_id=association_id,
        count=len(payload),
        data=payload
    )
    return packet.pack()


def build_client_request(now: int) -> bytes:
    """Client request carrying only the transmit timestamp seconds."""
    packet = ClientPacket(xmit_ts_sec=to_ntp_seconds(now))
    return packet.pack()


def decode_control_response(data: bytes) -> ControlPacket:
    return ControlPacket.unpack(data)


def decode_client_response(data: bytes) -> ClientPacket:
    packet = ClientPacket.unpack(data)
    if packet.mode != Mode.SERVER:
        raise MalformedPacket(f"Not a server mode packet: mode {packet.mode}")
    return packet


def build_control_response(request: ControlPacket, text: str, status: int = 0) -> bytes:
    """Reply to a control request, used by the loopback responder."""
    payload = text.encode('ascii')[:CONTROL_DATA_SIZE]
    packet = ControlPacket(
        version_mode=request.version_mode,
        op=request.op | CONTROL_RESPONSE_BIT,
        sequence=request.sequence,
        status=status,
        association_id=request.association_id,
        count=len(payload),
        data=payload
    )
    return packet.pack(pad=False)


def describe_packet(packet: Optional[object]) -> str:
    if isinstance(packet, ControlPacket):
        return (f"ControlPacket(seq={packet.sequence}, "
                f"op={packet.op:#x}, assoc={packet.association_id}, "
                f"count={packet.count})")
    if isinstance(packet, ClientPacket):
        return (f"ClientPacket(mode={packet.mode}, "
                f"stratum={packet.stratum}, xmit={packet.xmit_ts_sec})")
    return repr(packet)
