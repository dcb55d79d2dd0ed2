"""
Tests for the retry/timeout state machine
"""

from collections import deque

import pytest

from ntpq.correlator import ControlCorrelator, ClientCorrelator
from ntpq.errors import NoResponse, SendError
from ntpq.metrics import QueryMetrics
from ntpq.protocol import (
    ControlPacket, ClientPacket, ControlOp,
    build_control_request, build_client_request, build_control_response,
    decode_client_response, NTP_EPOCH_OFFSET
)
from ntpq.retry import EngineState, QueryKind, QueryRequest, RetryTimeoutEngine

SERVER = ('192.0.2.10', 123)


class FakeClock:
    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now


class FakeSession:
    """
    Scripted stand-in for SocketSession.

    ``script`` maps an attempt number to (delay_ms, data, source) replies
    that arrive delay_ms after that attempt's request was sent.
    """

    def __init__(self, clock: FakeClock, script=None, fail_send=False):
        self.clock = clock
        self.script = script or {}
        self.fail_send = fail_send
        self.sent = []
        self.waits = []
        self._queue = deque()

    def send(self, data, destination):
        if self.fail_send:
            raise SendError("udp sendto failed: network unreachable")
        self.sent.append((data, destination))
        for delay, data, source in self.script.get(len(self.sent), []):
            self._queue.append((self.clock.now + delay, data, source))

    def wait_readable(self, timeout_ms):
        self.waits.append(timeout_ms)
        if self._queue and self._queue[0][0] <= self.clock.now + timeout_ms:
            self.clock.now = max(self.clock.now, self._queue[0][0])
            return True
        self.clock.now += timeout_ms
        return False

    def receive(self, size=512):
        _, data, source = self._queue.popleft()
        return data, source


def control_reply(sequence, text="stratum=2"):
    return build_control_response(ControlPacket(sequence=sequence), text)


def run_control(session, clock, retries=2, timeout_ms=900, sequence=7, metrics=None):
    engine = RetryTimeoutEngine(session, metrics=metrics, clock=clock, wall_clock=lambda: 1000)
    request = QueryRequest(SERVER, QueryKind.STATUS, retries=retries, timeout_ms=timeout_ms)
    payload = build_control_request(ControlOp.READVAR, 0, sequence)
    exchange = engine.run(request, lambda attempt, now: payload,
                          ControlCorrelator(SERVER, sequence), sequence=sequence)
    return engine, exchange


class TestQueryRequest:
    """Test request validation and budget slicing"""

    def test_attempt_budget(self):
        """The timeout is divided evenly with integer division"""
        request = QueryRequest(SERVER, QueryKind.TIME, retries=2, timeout_ms=1000)
        assert request.attempts == 3
        assert request.attempt_budget_ms == 333

    def test_invalid_budget(self):
        """Negative retries and non-positive timeouts are refused"""
        with pytest.raises(ValueError):
            QueryRequest(SERVER, QueryKind.TIME, retries=-1)
        with pytest.raises(ValueError):
            QueryRequest(SERVER, QueryKind.TIME, timeout_ms=0)


class TestExhaustion:
    """Test behaviour when nothing ever answers"""

    @pytest.mark.parametrize("retries", [0, 1, 2, 5])
    def test_sends_retries_plus_one(self, retries):
        """Exactly retries + 1 requests go out before NoResponse"""
        clock = FakeClock()
        session = FakeSession(clock)

        with pytest.raises(NoResponse, match="no ntp response"):
            run_control(session, clock, retries=retries, timeout_ms=1000)

        assert len(session.sent) == retries + 1
        budget = 1000 // (retries + 1)
        assert session.waits == [budget] * (retries + 1)
        assert clock.now <= 1000

    def test_zero_budget_still_attempts(self):
        """A timeout smaller than the attempt count still sends every attempt"""
        clock = FakeClock()
        session = FakeSession(clock)

        with pytest.raises(NoResponse):
            run_control(session, clock, retries=4, timeout_ms=3)

        assert len(session.sent) == 5
        assert session.waits == [0] * 5

    def test_final_state(self):
        """The machine ends in EXHAUSTED"""
        clock = FakeClock()
        engine = RetryTimeoutEngine(FakeSession(clock), clock=clock)
        request = QueryRequest(SERVER, QueryKind.TIME, retries=0, timeout_ms=10)

        with pytest.raises(NoResponse):
            engine.run(request, lambda attempt, now: build_client_request(now),
                       ClientCorrelator(SERVER))

        assert engine.state is EngineState.EXHAUSTED
        assert engine.attempts == 1
        assert engine.history == [
            EngineState.IDLE, EngineState.SENDING, EngineState.WAITING,
            EngineState.IDLE, EngineState.EXHAUSTED
        ]


class TestMatching:
    """Test acceptance and discarding within an attempt"""

    def test_first_attempt_success(self):
        """A matching reply ends the query after one send"""
        clock = FakeClock()
        session = FakeSession(clock, {1: [(40, control_reply(7), SERVER)]})

        engine, exchange = run_control(session, clock)

        assert len(session.sent) == 1
        assert exchange.attempts == 1
        assert exchange.rtt_ms == 40
        assert exchange.packet.text == "stratum=2"
        assert engine.history == [
            EngineState.IDLE, EngineState.SENDING, EngineState.WAITING,
            EngineState.VALIDATING, EngineState.SUCCEEDED
        ]

    def test_wrong_sequence_does_not_consume_attempt(self):
        """A stale reply is skipped and the real one accepted in the same attempt"""
        clock = FakeClock()
        session = FakeSession(clock, {1: [
            (100, control_reply(6), SERVER),
            (250, control_reply(7), SERVER),
        ]})
        metrics = QueryMetrics()

        engine, exchange = run_control(session, clock, metrics=metrics)

        assert len(session.sent) == 1
        assert exchange.attempts == 1
        assert session.waits == [300, 200]
        assert metrics.get_current_stats()['by_kind']['status']['discarded'] == {
            'wrong-sequence': 1
        }

    def test_wrong_source_never_accepted(self):
        """A valid reply from another address never ends the query"""
        clock = FakeClock()
        impostor = ('192.0.2.99', 123)
        session = FakeSession(clock, {
            attempt: [(10, control_reply(7), impostor)] for attempt in (1, 2, 3)
        })

        with pytest.raises(NoResponse):
            run_control(session, clock)

        assert len(session.sent) == 3

    def test_wrong_port_never_accepted(self):
        """A valid reply from another port never ends the query"""
        clock = FakeClock()
        session = FakeSession(clock, {1: [(10, control_reply(7), ('192.0.2.10', 124))]})

        with pytest.raises(NoResponse):
            run_control(session, clock, retries=0)

    def test_short_datagram_discarded(self):
        """Short datagrams are skipped without error"""
        clock = FakeClock()
        session = FakeSession(clock, {1: [
            (10, b'\x1e\x82', SERVER),
            (20, control_reply(7), SERVER),
        ]})

        engine, exchange = run_control(session, clock)
        assert exchange.attempts == 1

    def test_late_reply_answered_on_retry(self):
        """A reply for the second attempt is accepted with the same sequence"""
        clock = FakeClock()
        session = FakeSession(clock, {2: [(50, control_reply(7), SERVER)]})

        engine, exchange = run_control(session, clock, retries=2, timeout_ms=900)

        assert exchange.attempts == 2
        assert len(session.sent) == 2
        assert session.sent[0][0] == session.sent[1][0]

    def test_discard_after_budget_moves_to_next_attempt(self):
        """A mismatch arriving at the end of the budget starts the next attempt"""
        clock = FakeClock()
        session = FakeSession(clock, {
            1: [(300, control_reply(1), SERVER)],
            2: [(10, control_reply(7), SERVER)],
        })

        engine, exchange = run_control(session, clock, retries=2, timeout_ms=900)

        assert exchange.attempts == 2
        assert session.waits == [300, 300]


class TestClientMode:
    """Test client mode specifics"""

    def test_transmit_time_recomputed_per_attempt(self):
        """Each attempt carries the wall clock second it was sent at"""
        clock = FakeClock()
        reply = ClientPacket(li_vn_mode=0x1C, stratum=2).pack()
        session = FakeSession(clock, {3: [(5, reply, SERVER)]})
        seconds = iter(range(5000, 5100))
        engine = RetryTimeoutEngine(session, clock=clock, wall_clock=lambda: next(seconds))
        request = QueryRequest(SERVER, QueryKind.TIME, retries=2, timeout_ms=300)

        exchange = engine.run(request, lambda attempt, now: build_client_request(now),
                              ClientCorrelator(SERVER))

        transmit = [int.from_bytes(data[40:44], 'big') - NTP_EPOCH_OFFSET
                    for data, _ in session.sent]
        assert transmit == [5000, 5001, 5002]
        assert exchange.sent_at == 5002
        assert exchange.received_at == 5003

    def test_non_server_mode_keeps_waiting(self):
        """A mode 3 echo is skipped and the server answer accepted"""
        clock = FakeClock()
        session = FakeSession(clock, {1: [
            (5, build_client_request(0), SERVER),
            (9, ClientPacket(li_vn_mode=0x1C, stratum=4).pack(), SERVER),
        ]})
        engine = RetryTimeoutEngine(session, clock=clock)
        request = QueryRequest(SERVER, QueryKind.TIME, retries=0, timeout_ms=100)

        exchange = engine.run(request, lambda attempt, now: build_client_request(now),
                              ClientCorrelator(SERVER))

        assert decode_client_response(exchange.packet.pack()).stratum == 4


class TestTransportErrors:
    """Test that transport failures abort at once"""

    def test_send_error_propagates(self):
        """SendError is raised on the first attempt"""
        clock = FakeClock()
        session = FakeSession(clock, fail_send=True)
        engine = RetryTimeoutEngine(session, clock=clock)
        request = QueryRequest(SERVER, QueryKind.TIME, retries=3, timeout_ms=400)

        with pytest.raises(SendError):
            engine.run(request, lambda attempt, now: build_client_request(now),
                       ClientCorrelator(SERVER))

        assert engine.attempts == 1
        assert session.waits == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
