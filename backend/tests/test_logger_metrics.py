"""
Tests for the query event log and metrics
"""

import pytest

from ntpq.client import NtpClient
from ntpq.errors import NoResponse
from ntpq.logger import QueryLogger, LogReader
from ntpq.metrics import QueryMetrics


class TestQueryLogger:
    """Test JSONL event logging"""

    def test_events_written_on_flush(self, tmp_path):
        """Buffered events reach events.jsonl"""
        logger = QueryLogger(output_dir=str(tmp_path), session_id="s1", buffer_size=100)
        logger.log_query('time', ('127.0.0.1', 123), 2, 2000)
        logger.log_sent('time', 1, 48)
        logger.log_discarded('time', ('127.0.0.1', 123), 'short')
        logger.close()

        reader = LogReader(str(tmp_path / "s1"))
        events = list(reader.iter_events())
        assert [e['type'] for e in events] == ['query', 'sent', 'discard']
        assert reader.get_discard_reasons() == {'short': 1}

    def test_buffer_flushes_when_full(self, tmp_path):
        """Reaching buffer_size writes without an explicit flush"""
        logger = QueryLogger(output_dir=str(tmp_path), session_id="s2", buffer_size=2)
        logger.log_attempt_timeout('status', 1)
        logger.log_attempt_timeout('status', 2)

        reader = LogReader(str(tmp_path / "s2"))
        assert len(reader.get_events_by_type('attempt_timeout')) == 2
        logger.close()

    def test_query_activity_logged(self, tmp_path, responder_factory):
        """A failing and a succeeding query leave a full trail"""
        responder = responder_factory(drop_first=1)
        with QueryLogger(output_dir=str(tmp_path), session_id="s3") as logger:
            ntp = NtpClient(query_logger=logger)
            try:
                with pytest.raises(NoResponse):
                    ntp.query_time(*responder.address, retries=0, timeout_ms=100)
                ntp.query_time(*responder.address, retries=0, timeout_ms=1000)
            finally:
                ntp.close()
            logger.log_summary(ntp.metrics.get_current_stats())

        reader = LogReader(str(tmp_path / "s3"))
        stats = reader.compute_statistics()
        assert stats['total']['queries'] == 2
        assert stats['total']['sent'] == 2
        assert stats['total']['failures'] == 1
        assert stats['by_kind']['time']['received'] == 1
        assert len(reader.get_events_by_type('exhausted')) == 1
        assert reader.read_summary()['stats']['total']['succeeded'] == 1


class TestQueryMetrics:
    """Test counters and round-trip statistics"""

    def test_counters(self):
        """Per-kind counters and success rate"""
        metrics = QueryMetrics()
        metrics.record_query('time')
        metrics.record_query('time')
        metrics.record_sent('time')
        metrics.record_success('time', 12)
        metrics.record_failure('time', NoResponse(), no_response=True)

        stats = metrics.get_current_stats()
        time_stats = stats['by_kind']['time']
        assert time_stats['queries'] == 2
        assert time_stats['succeeded'] == 1
        assert time_stats['no_response'] == 1
        assert time_stats['success_rate'] == 50.0
        assert stats['total']['queries'] == 2
        assert metrics.get_recent_events()[0]['error'] == "no ntp response"

    def test_rtt_statistics(self):
        """Mean, median and p95 of round-trip times"""
        metrics = QueryMetrics()
        for rtt in range(1, 21):
            metrics.record_success('status', rtt)

        status = metrics.get_current_stats()['by_kind']['status']
        assert status['avg_rtt_ms'] == 10.5
        assert status['median_rtt_ms'] == 10.5
        assert status['p95_rtt_ms'] == 20

    def test_rtt_window_bounded(self):
        """Only the last window_size round-trip times are kept"""
        metrics = QueryMetrics(window_size=10)
        for rtt in range(1000):
            metrics.record_success('time', rtt)

        time_stats = metrics.get_current_stats()['by_kind']['time']
        assert time_stats['succeeded'] == 1000
        assert time_stats['median_rtt_ms'] == 994.5
        assert time_stats['p95_rtt_ms'] == 999


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
