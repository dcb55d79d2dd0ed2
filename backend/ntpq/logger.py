"""NTP query event log - JSONL format."""

import json
import threading
import random
from datetime import datetime
from typing import Dict, List, Optional, TextIO
from pathlib import Path

from .protocol import now_ms


class QueryLogger:
    """JSONL logger for NTP query activity."""

    def __init__(self,
                 output_dir: str = "./logs",
                 session_id: str = None,
                 buffer_size: int = 100):
        if session_id is None:
            session_id = generate_session_id()

        self.session_id = session_id
        self.output_dir = Path(output_dir) / session_id
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self._buffer_size = buffer_size
        self._event_buffer: List[dict] = []
        self._lock = threading.Lock()

        self._events_file: Optional[TextIO] = None
        self._summary_file: Optional[TextIO] = None

        self._open_files()

        self._event_count = 0
        self._start_time = now_ms()

    def _open_files(self):
        self._events_file = open(self.output_dir / "events.jsonl", 'w')
        self._summary_file = open(self.output_dir / "summary.jsonl", 'w')

    def log_query(self, kind: str, destination: tuple, retries: int, timeout_ms: int):
        self._buffer_event({
            'type': 'query',
            'ts': now_ms(),
            'kind': kind,
            'host': destination[0],
            'port': destination[1],
            'retries': retries,
            'timeout_ms': timeout_ms,
        })

    def log_sent(self, kind: str, attempt: int, size: int, sequence: Optional[int] = None):
        self._buffer_event({
            'type': 'sent',
            'ts': now_ms(),
            'kind': kind,
            'attempt': attempt,
            'size': size,
            'seq': sequence,
        })

    def log_received(self, kind: str, source: tuple, size: int, rtt_ms: int):
        self._buffer_event({
            'type': 'recv',
            'ts': now_ms(),
            'kind': kind,
            'source': f"{source[0]}:{source[1]}",
            'size': size,
            'rtt': rtt_ms,
        })

    def log_discarded(self, kind: str, source: tuple, reason: str):
        self._buffer_event({
            'type': 'discard',
            'ts': now_ms(),
            'kind': kind,
            'source': f"{source[0]}:{source[1]}",
            'reason': reason,
        })

    def log_attempt_timeout(self, kind: str, attempt: int):
        self._buffer_event({
            'type': 'attempt_timeout',
            'ts': now_ms(),
            'kind': kind,
            'attempt': attempt,
        })

    def log_failure(self, kind: str, error: Exception):
        self._buffer_event({
            'type': 'failure',
            'ts': now_ms(),
            'kind': kind,
            'error': type(error).__name__,
            'message': str(error),
        })

    def log_result(self, kind: str, result: dict):
        self._buffer_event({
            'type': 'result',
            'ts': now_ms(),
            'kind': kind,
            'result': result,
        })

    def log_custom_event(self, event_type: str, **data):
        self._buffer_event({
            'type': event_type,
            'ts': now_ms(),
            **data
        })

    def log_summary(self, stats: dict):
        summary = {
            'type': 'summary',
            'session_id': self.session_id,
            'end_timestamp': datetime.now().isoformat(),
            'duration_ms': now_ms() - self._start_time,
            'total_events': self._event_count,
            'stats': stats,
        }
        with self._lock:
            self._write_line(self._summary_file, summary)

    def _buffer_event(self, event: dict):
        with self._lock:
            self._event_buffer.append(event)
            self._event_count += 1

            if len(self._event_buffer) >= self._buffer_size:
                self._flush_events()

    def _flush_events(self):
        if not self._event_buffer:
            return

        for event in self._event_buffer:
            self._write_line(self._events_file, event)

        self._event_buffer.clear()
        self._events_file.flush()

    def _write_line(self, file: TextIO, data: dict):
        json.dump(data, file, separators=(',', ':'))
        file.write('\n')

    def flush(self):
        with self._lock:
            self._flush_events()
            if self._summary_file:
                self._summary_file.flush()

    def close(self):
        self.flush()

        if self._events_file:
            self._events_file.close()
        if self._summary_file:
            self._summary_file.close()

    @property
    def event_count(self) -> int:
        return self._event_count

    @property
    def log_path(self) -> Path:
        return self.output_dir

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def generate_session_id(prefix: str = "ntpq") -> str:
    """Generate unique log session ID."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    random_suffix = random.randint(1000, 9999)
    return f"{prefix}_{timestamp}_{random_suffix}"


class LogReader:
    """Reader for JSONL query logs."""

    def __init__(self, log_dir: str):
        self.log_dir = Path(log_dir)

    def iter_events(self):
        events_file = self.log_dir / "events.jsonl"
        if events_file.exists():
            with open(events_file) as f:
                for line in f:
                    yield json.loads(line)

    def read_summary(self) -> dict:
        summary_file = self.log_dir / "summary.jsonl"
        if summary_file.exists():
            with open(summary_file) as f:
                last_line = None
                for line in f:
                    if '"type":"summary"' in line:
                        last_line = line
                if last_line:
                    return json.loads(last_line)
        return {}

    def get_events_by_type(self, event_type: str) -> List[dict]:
        return [e for e in self.iter_events() if e.get('type') == event_type]

    def get_discard_reasons(self) -> Dict[str, int]:
        reasons: Dict[str, int] = {}
        for event in self.get_events_by_type('discard'):
            reason = event.get('reason', 'unknown')
            reasons[reason] = reasons.get(reason, 0) + 1
        return reasons

    def compute_statistics(self) -> dict:
        from statistics import mean, median

        stats = {
            'by_kind': {},
            'total': {'queries': 0, 'sent': 0, 'received': 0, 'failures': 0}
        }

        rtts_by_kind: Dict[str, List[int]] = {}

        for event in self.iter_events():
            etype = event.get('type')
            kind = event.get('kind', 'unknown')
            kind_stats = stats['by_kind'].setdefault(
                kind, {'queries': 0, 'sent': 0, 'received': 0, 'failures': 0}
            )

            if etype == 'query':
                kind_stats['queries'] += 1
                stats['total']['queries'] += 1
            elif etype == 'sent':
                kind_stats['sent'] += 1
                stats['total']['sent'] += 1
            elif etype == 'recv':
                kind_stats['received'] += 1
                stats['total']['received'] += 1
                if event.get('rtt') is not None:
                    rtts_by_kind.setdefault(kind, []).append(event['rtt'])
            elif etype == 'failure':
                kind_stats['failures'] += 1
                stats['total']['failures'] += 1

        for kind, rtts in rtts_by_kind.items():
            stats['by_kind'][kind]['rtt'] = {
                'mean': mean(rtts),
                'median': median(rtts),
            }

        return stats
