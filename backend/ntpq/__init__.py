"""ntpq - dual-mode NTP query engine (control mode status, client mode time)."""

from .protocol import (
    ControlPacket, ClientPacket, Mode, ControlOp,
    build_control_request, build_client_request,
    decode_control_response, decode_client_response,
    NTP_PORT, NTP_EPOCH_OFFSET, CONTROL_PACKET_SIZE, CLIENT_PACKET_SIZE,
    now_ms
)

from .errors import (
    NtpError, SocketError, SendError, ReceiveError, NoResponse,
    MalformedPacket, PeerQueryFailed, AddressError
)

from .session import SocketSession

from .retry import RetryTimeoutEngine, EngineState, QueryKind, QueryRequest, Exchange

from .correlator import ControlCorrelator, ClientCorrelator

from .varlist import split_to_dict, find_peer_association

from .clock_sync import TimeResult, compute_offset_delay, format_refid, build_time_result

from .config import QueryDefaults

from .client import NtpClient, query_status, query_time, resolve_address

from .metrics import QueryMetrics

from .logger import QueryLogger, LogReader, generate_session_id

from .server import NtpResponder, ResponderConfig

__version__ = "1.0.0"
__all__ = [
    'ControlPacket', 'ClientPacket', 'Mode', 'ControlOp',
    'build_control_request', 'build_client_request',
    'decode_control_response', 'decode_client_response',
    'NTP_PORT', 'NTP_EPOCH_OFFSET', 'CONTROL_PACKET_SIZE', 'CLIENT_PACKET_SIZE',
    'now_ms',
    'NtpError', 'SocketError', 'SendError', 'ReceiveError', 'NoResponse',
    'MalformedPacket', 'PeerQueryFailed', 'AddressError',
    'SocketSession',
    'RetryTimeoutEngine', 'EngineState', 'QueryKind', 'QueryRequest', 'Exchange',
    'ControlCorrelator', 'ClientCorrelator',
    'split_to_dict', 'find_peer_association',
    'TimeResult', 'compute_offset_delay', 'format_refid', 'build_time_result',
    'QueryDefaults',
    'NtpClient', 'query_status', 'query_time', 'resolve_address',
    'QueryMetrics',
    'QueryLogger', 'LogReader', 'generate_session_id',
    'NtpResponder', 'ResponderConfig',
]
