"""Query defaults and validation."""

from dataclasses import dataclass, asdict
from typing import Optional

DEFAULT_RETRIES = 2
DEFAULT_TIMEOUT_MS = 2000


@dataclass
class QueryDefaults:
    """Retries and timeout used when a caller does not pass them."""
    retries: int = DEFAULT_RETRIES
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self):
        validate_budget(self.retries, self.timeout_ms)

    def update(self, retries: Optional[int] = None, timeout_ms: Optional[int] = None):
        new_retries = self.retries if retries is None else retries
        new_timeout = self.timeout_ms if timeout_ms is None else timeout_ms
        validate_budget(new_retries, new_timeout)
        self.retries = new_retries
        self.timeout_ms = new_timeout

    def resolve(self, retries: Optional[int], timeout_ms: Optional[int]) -> tuple:
        retries = self.retries if retries is None else retries
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        validate_budget(retries, timeout_ms)
        return retries, timeout_ms

    def to_dict(self) -> dict:
        return asdict(self)


def validate_budget(retries: int, timeout_ms: int):
    if retries < 0:
        raise ValueError(f"retries must be >= 0, got {retries}")
    if timeout_ms <= 0:
        raise ValueError(f"timeout must be > 0 ms, got {timeout_ms}")
