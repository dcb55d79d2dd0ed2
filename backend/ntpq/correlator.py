"""Matching of received datagrams against the outstanding request."""

from typing import Optional, Tuple

from .errors import MalformedPacket
from .protocol import (
    ControlPacket, ClientPacket, CLIENT_PACKET_SIZE,
    decode_control_response, decode_client_response
)


class ControlCorrelator:
    """Accepts the mode 6 response to one control request."""

    def __init__(self, destination: Tuple[str, int], sequence: int):
        self.destination = destination
        self.sequence = sequence
        self.last_reason: Optional[str] = None

    def match(self, data: bytes, source: Tuple[str, int]) -> Optional[ControlPacket]:
        try:
            packet = decode_control_response(data)
        except MalformedPacket:
            return self._reject("short")

        if not packet.is_response:
            return self._reject("not-response")
        if source[0] != self.destination[0]:
            return self._reject("wrong-source")
        if source[1] != self.destination[1]:
            return self._reject("wrong-port")
        if packet.sequence != self.sequence:
            return self._reject("wrong-sequence")

        self.last_reason = None
        return packet

    def _reject(self, reason: str) -> None:
        self.last_reason = reason
        return None


class ClientCorrelator:
    """Accepts the server mode answer to a client request."""

    def __init__(self, destination: Tuple[str, int]):
        self.destination = destination
        self.last_reason: Optional[str] = None

    def match(self, data: bytes, source: Tuple[str, int]) -> Optional[ClientPacket]:
        try:
            packet = decode_client_response(data)
        except MalformedPacket:
            if len(data) < CLIENT_PACKET_SIZE:
                return self._reject("short")
            return self._reject("not-server-mode")

        # the source port is not compared in client mode
        if source[0] != self.destination[0]:
            return self._reject("wrong-source")

        self.last_reason = None
        return packet

    def _reject(self, reason: str) -> None:
        self.last_reason = reason
        return None
