"""ntpq command line - `ntpq [--timeout t] [--retries r] (time|status) host`."""

import argparse
import logging
import sys
from typing import List, Optional

from .client import NtpClient
from .errors import NtpError
from .logger import QueryLogger
from .protocol import NTP_PORT


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative integer, got {value}")
    return number


def _port(value: str) -> int:
    number = int(value)
    if not 1 <= number <= 65535:
        raise argparse.ArgumentTypeError(f"expected a port in 1..65535, got {value}")
    return number


def _positive_seconds(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number of seconds, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ntpq",
        description="Query an NTP server for its status variables or its time."
    )
    parser.add_argument("--timeout", type=_positive_seconds, default=None,
                        help="total timeout in seconds (default 2)")
    parser.add_argument("--retries", type=_non_negative_int, default=None,
                        help="number of retries (default 2)")
    parser.add_argument("--port", type=_port, default=NTP_PORT,
                        help="server port (default %(default)s)")
    parser.add_argument("--log-dir", default=None,
                        help="write a JSONL event log below this directory")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="enable debug output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    time_parser = subparsers.add_parser("time", help="client mode (mode 3) time query")
    time_parser.add_argument("host")

    status_parser = subparsers.add_parser("status", help="control mode (mode 6) status query")
    status_parser.add_argument("host")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s"
    )

    timeout_ms = None if args.timeout is None else max(1, int(args.timeout * 1000))

    query_logger = QueryLogger(output_dir=args.log_dir) if args.log_dir else None
    client = NtpClient(query_logger=query_logger)

    try:
        if args.command == "time":
            result = client.query_time(args.host, args.port, args.retries, timeout_ms)
            lines = result.to_dict().items()
        else:
            lines = client.query_status(args.host, args.port, args.retries, timeout_ms).items()
    except NtpError as e:
        print(str(e), file=sys.stderr)
        return 1
    finally:
        client.close()
        if query_logger:
            query_logger.log_summary(client.metrics.get_current_stats())
            query_logger.close()

    for key, value in lines:
        print(f"{key} {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
