"""Clock arithmetic - offset/delay from the four NTP timestamps."""

import socket
from dataclasses import dataclass, asdict
from typing import Tuple

from .protocol import ClientPacket, NTP_EPOCH_OFFSET


@dataclass
class TimeResult:
    """Result of a client mode time query."""
    time: int
    offset: float
    delay: float
    stratum: int
    precision: int
    refid: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data['offset'] = f"{self.offset:.6f}"
        data['delay'] = f"{self.delay:.6f}"
        return data


def compute_offset_delay(t1: int, t2: int, t3: int, t4: int) -> Tuple[float, float]:
    """
    RFC 5905 on-wire calculation.

    t1 is the client transmit time, t2 the server receive time, t3 the
    server transmit time and t4 the client receive time, all on the same
    timescale.
    """
    offset = ((t2 - t1) + (t3 - t4)) / 2.0
    delay = float((t4 - t1) - (t3 - t2))
    return offset, delay


def format_refid(stratum: int, ref_id: bytes) -> str:
    if stratum <= 1:
        tag = ref_id[:4].split(b'\0', 1)[0]
        return tag.decode('ascii', errors='replace')
    return socket.inet_ntoa(ref_id[:4])


def build_time_result(packet: ClientPacket, t1: int, t4: int) -> TimeResult:
    """
    Whole seconds only: t1 and t4 are NTP-epoch seconds taken when the
    request went out and the answer came back, the fraction fields of the
    server timestamps are ignored.
    """
    t2 = packet.recv_ts_sec
    t3 = packet.xmit_ts_sec
    offset, delay = compute_offset_delay(t1, t2, t3, t4)

    return TimeResult(
        time=t3 - NTP_EPOCH_OFFSET,
        offset=offset,
        delay=delay,
        stratum=packet.stratum,
        precision=packet.precision,
        refid=format_refid(packet.stratum, packet.ref_id_bytes)
    )
