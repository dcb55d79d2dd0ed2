"""Parsing of mode 6 variable lists ("name=value, name=value, ...")."""

import re
from typing import Dict, Optional

WHITESPACE = ' \t\n\r\v\f'
MAX_KEY_LENGTH = 255

_PEER_PATTERN = re.compile(r'peer=\s*(\d+)')


def _put(result: Dict[str, str], prefix: str, segment: str):
    name, sep, value = segment.partition('=')
    if not sep:
        return
    key = f"{prefix}.{name}"[:MAX_KEY_LENGTH]
    result[key] = value


def _strip_tail(segment: str) -> str:
    # at most two trailing bytes, e.g. the "\r\n" ntpd appends
    if len(segment) >= 2 and segment[-2] in WHITESPACE:
        return segment[:-2]
    if segment and segment[-1] in WHITESPACE:
        return segment[:-1]
    return segment


def split_to_dict(text: str, prefix: str,
                  result: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Split a comma separated variable list into ``prefix.name -> value``.

    Segments without '=' are skipped. Repeated names keep the last value.
    """
    if result is None:
        result = {}

    segments = text.split(',')
    last = segments.pop()

    for index, segment in enumerate(segments):
        if index > 0:
            segment = segment.lstrip(WHITESPACE)
        _put(result, prefix, segment)

    if segments:
        last = last.lstrip(WHITESPACE)
    if last:
        _put(result, prefix, _strip_tail(last))

    return result


def find_peer_association(text: str) -> Optional[int]:
    """Association id of the system peer, or None if there is none."""
    match = _PEER_PATTERN.search(text)
    if not match:
        return None
    association_id = int(match.group(1)) & 0xFFFF
    return association_id or None
