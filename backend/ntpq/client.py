"""NTP query client - status (mode 6) and time (mode 3) queries."""

import logging
import socket
import threading
from typing import Dict, Optional, Tuple

from .clock_sync import TimeResult, build_time_result
from .config import QueryDefaults
from .correlator import ControlCorrelator, ClientCorrelator
from .errors import AddressError, NoResponse, NtpError, PeerQueryFailed
from .logger import QueryLogger
from .metrics import QueryMetrics
from .protocol import (
    ControlOp, NTP_EPOCH_OFFSET, NTP_PORT,
    build_control_request, build_client_request
)
from .retry import Exchange, QueryKind, QueryRequest, RetryTimeoutEngine
from .session import SocketSession
from .varlist import split_to_dict, find_peer_association

logger = logging.getLogger(__name__)


def resolve_address(host: str, port: int = NTP_PORT) -> Tuple[str, int]:
    """Resolve host to a numeric IPv4 (address, port) pair."""
    if not 1 <= port <= 65535:
        raise AddressError(f"port {port} out of range 1..65535")

    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise AddressError(f'unknown IP address "{host}"') from e

    if not infos:
        raise AddressError(f'unknown IP address "{host}"')

    family, socktype, proto, canonname, sockaddr = infos[0]
    return sockaddr[0], sockaddr[1]


class NtpClient:
    """Runs NTP queries over one shared socket session."""

    def __init__(self,
                 session: Optional[SocketSession] = None,
                 defaults: Optional[QueryDefaults] = None,
                 query_logger: Optional[QueryLogger] = None,
                 metrics: Optional[QueryMetrics] = None):
        self.session = session or SocketSession()
        self.defaults = defaults or QueryDefaults()
        self.query_logger = query_logger
        self.metrics = metrics or QueryMetrics()

    def _engine(self) -> RetryTimeoutEngine:
        return RetryTimeoutEngine(
            self.session,
            query_logger=self.query_logger,
            metrics=self.metrics
        )

    def _begin(self, kind: QueryKind, destination: Tuple[str, int],
               retries: int, timeout_ms: int):
        self.metrics.record_query(kind.value)
        if self.query_logger:
            self.query_logger.log_query(kind.value, destination, retries, timeout_ms)

    def _fail(self, kind: QueryKind, error: NtpError):
        self.metrics.record_failure(kind.value, error, isinstance(error, NoResponse))
        if self.query_logger:
            self.query_logger.log_failure(kind.value, error)

    def _fetch(self, destination: Tuple[str, int], association_id: int,
               retries: int, timeout_ms: int) -> Exchange:
        request = QueryRequest(
            destination=destination,
            kind=QueryKind.STATUS,
            association_id=association_id,
            retries=retries,
            timeout_ms=timeout_ms
        )
        sequence = self.session.next_sequence()
        payload = build_control_request(ControlOp.READVAR, association_id, sequence)
        correlator = ControlCorrelator(destination, sequence)

        return self._engine().run(
            request,
            lambda attempt, now: payload,
            correlator,
            sequence=sequence
        )

    def query_status(self, host: str, port: int = NTP_PORT,
                     retries: Optional[int] = None,
                     timeout_ms: Optional[int] = None) -> Dict[str, str]:
        """
        Read the system variables of host and, when it reports a system
        peer, that peer's variables too.

        Keys are prefixed with "sys." and "peer.". A failed peer query
        leaves only the system entries.
        """
        retries, timeout_ms = self.defaults.resolve(retries, timeout_ms)
        destination = resolve_address(host, port)
        kind = QueryKind.STATUS
        self._begin(kind, destination, retries, timeout_ms)

        peer_text = ''
        with self.session.lock:
            try:
                exchange = self._fetch(destination, 0, retries, timeout_ms)
            except NtpError as e:
                self._fail(kind, e)
                raise

            system_text = exchange.packet.text
            association_id = find_peer_association(system_text)
            if association_id is not None:
                try:
                    peer_text = self._fetch(destination, association_id,
                                            retries, timeout_ms).packet.text
                except NtpError as e:
                    failure = PeerQueryFailed(association_id, e)
                    logger.info("%s", failure)
                    self.metrics.record_peer_failure(failure)
                    if self.query_logger:
                        self.query_logger.log_failure(kind.value, failure)

        result = split_to_dict(system_text, 'sys')
        if peer_text:
            split_to_dict(peer_text, 'peer', result)

        self.metrics.record_success(kind.value, exchange.rtt_ms)
        if self.query_logger:
            self.query_logger.log_result(kind.value, result)
        return result

    def query_time(self, host: str, port: int = NTP_PORT,
                   retries: Optional[int] = None,
                   timeout_ms: Optional[int] = None) -> TimeResult:
        """Client mode query: server time, offset, delay and reference."""
        retries, timeout_ms = self.defaults.resolve(retries, timeout_ms)
        destination = resolve_address(host, port)
        kind = QueryKind.TIME
        self._begin(kind, destination, retries, timeout_ms)

        request = QueryRequest(
            destination=destination,
            kind=kind,
            retries=retries,
            timeout_ms=timeout_ms
        )

        with self.session.lock:
            try:
                exchange = self._engine().run(
                    request,
                    lambda attempt, now: build_client_request(now),
                    ClientCorrelator(destination)
                )
            except NtpError as e:
                self._fail(kind, e)
                raise

        result = build_time_result(
            exchange.packet,
            exchange.sent_at + NTP_EPOCH_OFFSET,
            exchange.received_at + NTP_EPOCH_OFFSET
        )

        self.metrics.record_success(kind.value, exchange.rtt_ms)
        if self.query_logger:
            self.query_logger.log_result(kind.value, result.to_dict())
        return result

    def close(self):
        with self.session.lock:
            self.session.close()


_default_client: Optional[NtpClient] = None
_default_client_lock = threading.Lock()


def get_default_client() -> NtpClient:
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = NtpClient()
        return _default_client


def query_status(host: str, port: int = NTP_PORT,
                 retries: Optional[int] = None,
                 timeout_ms: Optional[int] = None) -> Dict[str, str]:
    return get_default_client().query_status(host, port, retries, timeout_ms)


def query_time(host: str, port: int = NTP_PORT,
               retries: Optional[int] = None,
               timeout_ms: Optional[int] = None) -> TimeResult:
    return get_default_client().query_time(host, port, retries, timeout_ms)
