from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_attempts`` counts every call, the first one included. The delay
    after attempt ``n`` (1-based) is ``base_delay_s * 2**(n-1)`` capped at
    ``max_delay_s``.
    """

    base_delay_s: float = 2.0
    max_delay_s: float = 60.0
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be >= 0")

    def delay(self, attempt: int) -> float:
        return min(self.max_delay_s, self.base_delay_s * (2 ** max(0, attempt - 1)))


DEFAULT_RETRY_POLICY = RetryPolicy()
