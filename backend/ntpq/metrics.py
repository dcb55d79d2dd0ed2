"""
NTP Query Metrics

Collects per query kind (status / time):
- Queries started, succeeded and failed
- Datagrams sent, received and discarded (by reason)
- Round-trip time of the most recent matched responses
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Deque
from collections import deque, defaultdict
from statistics import mean, median

from .protocol import now_ms

QUERY_KINDS = ('status', 'time')


@dataclass
class KindStats:
    """Aggregated statistics for one query kind"""
    kind: str
    queries: int = 0
    succeeded: int = 0
    no_response: int = 0
    transport_errors: int = 0
    peer_failures: int = 0
    sent: int = 0
    received: int = 0
    discarded: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    rtts: Deque[int] = field(default_factory=lambda: deque(maxlen=100))

    @property
    def success_rate(self) -> float:
        if self.queries == 0:
            return 0.0
        return self.succeeded / self.queries

    @property
    def avg_rtt(self) -> float:
        if not self.rtts:
            return 0.0
        return mean(self.rtts)

    @property
    def median_rtt(self) -> float:
        if not self.rtts:
            return 0.0
        return median(self.rtts)

    @property
    def p95_rtt(self) -> float:
        if len(self.rtts) < 20:
            return max(self.rtts) if self.rtts else 0.0
        sorted_rtts = sorted(self.rtts)
        idx = min(int(len(sorted_rtts) * 0.95), len(sorted_rtts) - 1)
        return sorted_rtts[idx]

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'queries': self.queries,
            'succeeded': self.succeeded,
            'no_response': self.no_response,
            'transport_errors': self.transport_errors,
            'peer_failures': self.peer_failures,
            'sent': self.sent,
            'received': self.received,
            'discarded': dict(self.discarded),
            'success_rate': round(self.success_rate * 100, 1),
            'avg_rtt_ms': round(self.avg_rtt, 2),
            'median_rtt_ms': round(self.median_rtt, 2),
            'p95_rtt_ms': round(self.p95_rtt, 2),
        }


class QueryMetrics:
    """
    Collects metrics across queries
    """

    def __init__(self, window_size: int = 100):
        self._lock = threading.Lock()
        self._window_size = window_size
        self._stats: Dict[str, KindStats] = {k: self._new_stats(k) for k in QUERY_KINDS}
        self._events: Deque[dict] = deque(maxlen=window_size)
        self._start_time = now_ms()

    def _new_stats(self, kind: str) -> KindStats:
        return KindStats(kind=kind, rtts=deque(maxlen=self._window_size))

    def _kind(self, kind: str) -> KindStats:
        if kind not in self._stats:
            self._stats[kind] = self._new_stats(kind)
        return self._stats[kind]

    def record_query(self, kind: str):
        with self._lock:
            self._kind(kind).queries += 1

    def record_sent(self, kind: str):
        with self._lock:
            self._kind(kind).sent += 1

    def record_received(self, kind: str):
        with self._lock:
            self._kind(kind).received += 1

    def record_discarded(self, kind: str, reason: str):
        with self._lock:
            self._kind(kind).discarded[reason] += 1

    def record_success(self, kind: str, rtt_ms: int):
        with self._lock:
            stats = self._kind(kind)
            stats.succeeded += 1
            if rtt_ms >= 0:
                stats.rtts.append(rtt_ms)

    def record_failure(self, kind: str, error: Exception, no_response: bool):
        with self._lock:
            stats = self._kind(kind)
            if no_response:
                stats.no_response += 1
            else:
                stats.transport_errors += 1
            self._events.append({
                'time': now_ms() - self._start_time,
                'type': 'failure',
                'kind': kind,
                'error': str(error),
            })

    def record_peer_failure(self, error: Exception):
        with self._lock:
            self._kind('status').peer_failures += 1
            self._events.append({
                'time': now_ms() - self._start_time,
                'type': 'peer_failure',
                'error': str(error),
            })

    def get_current_stats(self) -> dict:
        """Get current statistics snapshot"""
        with self._lock:
            total_queries = sum(s.queries for s in self._stats.values())
            total_succeeded = sum(s.succeeded for s in self._stats.values())

            return {
                'elapsed_ms': now_ms() - self._start_time,
                'total': {
                    'queries': total_queries,
                    'succeeded': total_succeeded,
                    'success_rate': round(total_succeeded / max(1, total_queries) * 100, 1),
                },
                'by_kind': {
                    name: stats.to_dict() for name, stats in self._stats.items()
                }
            }

    def get_recent_events(self, count: int = 20) -> list:
        with self._lock:
            return list(self._events)[-count:]

