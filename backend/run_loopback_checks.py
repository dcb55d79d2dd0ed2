"""
ntpq Loopback Checks
Runs status and time queries against a local responder with injected faults.
"""

import sys
import os
from datetime import datetime
from typing import Dict, List

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from ntpq.client import NtpClient
from ntpq.config import QueryDefaults
from ntpq.errors import NtpError
from ntpq.logger import QueryLogger
from ntpq.server import NtpResponder, ResponderConfig

SCENARIOS = [
    ("clean", ResponderConfig()),
    ("drop-first-two", ResponderConfig(drop_first=2)),
    ("stale-sequence", ResponderConfig(stale_first=True)),
    ("short-datagram", ResponderConfig(short_first=True)),
    ("silent-peer", ResponderConfig(answer_peer=False)),
    ("stratum-1", ResponderConfig(stratum=1, ref_id=b'GPS\0', clock_offset=3)),
]


def run_scenario(name: str, config: ResponderConfig, logger: QueryLogger) -> Dict:
    """Run one status and one time query against a fresh responder."""
    outcome = {'scenario': name}

    with NtpResponder(config=config) as responder:
        client = NtpClient(
            defaults=QueryDefaults(retries=3, timeout_ms=2000),
            query_logger=logger
        )
        try:
            try:
                status = client.query_status(*responder.address)
                outcome['status'] = f"{len(status)} vars"
                outcome['peer'] = 'yes' if any(k.startswith('peer.') for k in status) else 'no'
            except NtpError as e:
                outcome['status'] = str(e)
                outcome['peer'] = '-'

            try:
                result = client.query_time(*responder.address)
                outcome['time'] = f"offset={result.offset:+.1f}s refid={result.refid}"
            except NtpError as e:
                outcome['time'] = str(e)
        finally:
            client.close()

        outcome['requests'] = responder.get_stats()['seen']
        outcome['discarded'] = sum(
            sum(k['discarded'].values())
            for k in client.metrics.get_current_stats()['by_kind'].values()
        )

    return outcome


def print_results(results: List[Dict]):
    print(f"\n{'='*78}")
    print("  ntpq Loopback Checks")
    print(f"{'='*78}")
    print(f"\n{'Scenario':<16} {'Status':<18} {'Peer':>5} {'Reqs':>5} {'Disc':>5}  Time")
    print("-" * 78)

    for r in results:
        print(f"{r['scenario']:<16} {r['status']:<18} {r['peer']:>5} "
              f"{r['requests']:>5} {r['discarded']:>5}  {r['time']}")


def run_all_checks() -> List[Dict]:
    session_id = f"Loopback_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
    logger = QueryLogger(output_dir="./logs", session_id=session_id)

    results = [run_scenario(name, config, logger) for name, config in SCENARIOS]

    logger.log_summary({'scenarios': results})
    logger.close()

    print_results(results)
    print(f"\nLog: {logger.log_path}")
    return results


if __name__ == "__main__":
    run_all_checks()
