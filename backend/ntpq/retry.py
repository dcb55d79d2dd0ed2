"""Retry/timeout state machine driving one logical NTP query."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from .config import DEFAULT_RETRIES, DEFAULT_TIMEOUT_MS, validate_budget
from .errors import MalformedPacket, NoResponse
from .logger import QueryLogger
from .metrics import QueryMetrics
from .protocol import CONTROL_PACKET_SIZE, describe_packet, now_ms, wall_seconds
from .session import SocketSession

logger = logging.getLogger(__name__)


class QueryKind(Enum):
    STATUS = "status"
    TIME = "time"


class EngineState(Enum):
    IDLE = "idle"
    SENDING = "sending"
    WAITING = "waiting"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class QueryRequest:
    """One logical query against one destination."""
    destination: Tuple[str, int]
    kind: QueryKind
    association_id: int = 0
    retries: int = DEFAULT_RETRIES
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        validate_budget(self.retries, self.timeout_ms)

    @property
    def attempts(self) -> int:
        return self.retries + 1

    @property
    def attempt_budget_ms(self) -> int:
        return self.timeout_ms // (self.retries + 1)


@dataclass
class Exchange:
    """A matched response and the timing of the attempt that produced it."""
    packet: Any
    source: Tuple[str, int]
    attempts: int
    sent_at: int
    received_at: int
    rtt_ms: int


class RetryTimeoutEngine:
    """
    Send, wait and receive with bounded retries.

    The total timeout is sliced evenly over ``retries + 1`` attempts. Within
    an attempt every datagram goes to the correlator; a non-matching one
    only sends the machine back to WAITING with whatever budget is left.
    Transport errors from the session propagate untouched.
    """

    def __init__(self,
                 session: SocketSession,
                 query_logger: Optional[QueryLogger] = None,
                 metrics: Optional[QueryMetrics] = None,
                 clock: Callable[[], int] = now_ms,
                 wall_clock: Callable[[], int] = wall_seconds,
                 receive_size: int = CONTROL_PACKET_SIZE):
        self.session = session
        self.query_logger = query_logger
        self.metrics = metrics
        self.receive_size = receive_size

        self._clock = clock
        self._wall_clock = wall_clock

        self.state = EngineState.IDLE
        self.attempts = 0
        self.history: List[EngineState] = []

    def _transition(self, state: EngineState):
        self.state = state
        self.history.append(state)

    def run(self,
            request: QueryRequest,
            build: Callable[[int, int], bytes],
            correlator,
            sequence: Optional[int] = None) -> Exchange:
        """
        Drive one query to SUCCEEDED or EXHAUSTED.

        ``build(attempt, now)`` returns the request datagram for an attempt,
        ``now`` being the wall clock second it is sent at. ``correlator``
        needs ``match(data, source)`` returning the packet or None and a
        ``last_reason`` attribute.
        """
        kind = request.kind.value
        budget = request.attempt_budget_ms

        self.attempts = 0
        self.history = []
        self._transition(EngineState.IDLE)

        deadline = 0
        sent_at = sent_clock = 0
        received_at = received_clock = 0
        data = b''
        source: Tuple[str, int] = ('', 0)
        exchange: Optional[Exchange] = None

        while True:
            state = self.state

            if state is EngineState.IDLE:
                if self.attempts >= request.attempts:
                    self._transition(EngineState.EXHAUSTED)
                else:
                    self._transition(EngineState.SENDING)

            elif state is EngineState.SENDING:
                self.attempts += 1
                sent_at = self._wall_clock()
                payload = build(self.attempts, sent_at)
                self.session.send(payload, request.destination)
                sent_clock = self._clock()
                deadline = sent_clock + budget

                if self.query_logger:
                    self.query_logger.log_sent(kind, self.attempts, len(payload), sequence)
                if self.metrics:
                    self.metrics.record_sent(kind)
                self._transition(EngineState.WAITING)

            elif state is EngineState.WAITING:
                remaining = max(0, deadline - self._clock())
                if self.session.wait_readable(remaining):
                    data, source = self.session.receive(self.receive_size)
                    received_at = self._wall_clock()
                    received_clock = self._clock()

                    if self.query_logger:
                        self.query_logger.log_received(
                            kind, source, len(data), received_clock - sent_clock
                        )
                    if self.metrics:
                        self.metrics.record_received(kind)
                    self._transition(EngineState.VALIDATING)
                else:
                    if self.query_logger:
                        self.query_logger.log_attempt_timeout(kind, self.attempts)
                    logger.debug("%s attempt %d timed out after %d ms",
                                 kind, self.attempts, budget)
                    self._transition(EngineState.IDLE)

            elif state is EngineState.VALIDATING:
                try:
                    packet = correlator.match(data, source)
                except MalformedPacket:
                    packet = None

                if packet is not None:
                    exchange = Exchange(
                        packet=packet,
                        source=source,
                        attempts=self.attempts,
                        sent_at=sent_at,
                        received_at=received_at,
                        rtt_ms=received_clock - sent_clock
                    )
                    logger.debug("accepted %s from %s:%d",
                                 describe_packet(packet), source[0], source[1])
                    self._transition(EngineState.SUCCEEDED)
                    continue

                reason = getattr(correlator, 'last_reason', None) or 'unmatched'
                if self.query_logger:
                    self.query_logger.log_discarded(kind, source, reason)
                if self.metrics:
                    self.metrics.record_discarded(kind, reason)

                if self._clock() >= deadline:
                    self._transition(EngineState.IDLE)
                else:
                    self._transition(EngineState.WAITING)

            elif state is EngineState.SUCCEEDED:
                return exchange

            elif state is EngineState.EXHAUSTED:
                if self.query_logger:
                    self.query_logger.log_custom_event(
                        'exhausted', kind=kind, attempts=self.attempts
                    )
                raise NoResponse()
