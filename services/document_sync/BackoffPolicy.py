"""Retry delay computation for registry and store calls."""

import random
from datetime import datetime, timezone
from typing import Callable

from shared.helper.HelperConfig import HelperConfig
from shared.models.registry import RateLimitInfo

# 2**32 seconds is far beyond any sane max_delay
MAX_EXPONENT = 32


class BackoffPolicy:
    """
    Exponential backoff with jitter that defers to registry hints.

    Without a hint the delay is ``min(max_delay, base_delay * 2**attempt + U(0, jitter))``.
    With a hint (any RateLimitInfo, even an empty one) the registry's ``retry_after`` wins,
    then its ``reset_at``, then the exponential value; the result is floored at ``min_wait``
    and padded with ``hint_buffer``.
    """

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: float = 1.0,
        min_wait: float = 1.0,
        hint_buffer: float = 0.5,
        rand: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if base_delay <= 0:
            raise ValueError(f"base_delay must be positive, got {base_delay}")
        if max_delay < base_delay:
            raise ValueError(f"max_delay ({max_delay}) must not be smaller than base_delay ({base_delay})")
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self.jitter = max(0.0, float(jitter))
        self.min_wait = max(0.0, float(min_wait))
        self.hint_buffer = max(0.0, float(hint_buffer))
        self._rand = rand or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, helper_config: HelperConfig, prefix: str, base_delay: float, **kwargs) -> "BackoffPolicy":
        """Build a policy from ``{prefix}_BASE_DELAY`` / ``{prefix}_MAX_DELAY`` / ``{prefix}_JITTER``."""
        return cls(
            base_delay=helper_config.get_number_val(f"{prefix}_BASE_DELAY", default=base_delay),
            max_delay=helper_config.get_number_val(f"{prefix}_MAX_DELAY", default=60.0),
            jitter=helper_config.get_number_val(f"{prefix}_JITTER", default=1.0),
            **kwargs,
        )

    def compute_delay(self, attempt: int, hint: RateLimitInfo | None = None) -> float:
        """Return the number of seconds to wait before retry number ``attempt`` (0-based).

        Args:
            attempt (int): How many retries have already been made.
            hint (RateLimitInfo | None): Telemetry of a rate-limited response.

        Returns:
            float: A strictly positive delay in seconds.
        """
        if hint is None:
            return self._exponential(attempt)

        if hint.retry_after is not None:
            wait = hint.retry_after
        elif hint.reset_at is not None:
            wait = (hint.reset_at - self._clock()).total_seconds()
        else:
            wait = self._exponential(attempt)
        delay = max(wait, self.min_wait) + self.hint_buffer
        return delay if delay > 0 else self.base_delay

    def delay_until(self, reset_at: datetime | None, buffer: float = 1.0) -> float:
        """Seconds until ``reset_at`` plus ``buffer``. Falls back to base_delay when reset is unknown or past."""
        if reset_at is None:
            return self.base_delay + buffer
        wait = (reset_at - self._clock()).total_seconds()
        return (wait if wait > 0 else self.base_delay) + buffer

    def _exponential(self, attempt: int) -> float:
        exponent = min(max(attempt, 0), MAX_EXPONENT)
        raw = self.base_delay * (2 ** exponent) + self._rand.uniform(0, self.jitter)
        return min(self.max_delay, raw)
