"""Retry backoff policies for retry_on_failure nodes.

Retries never sleep inside the engine: the node computes how long to wait
before the next attempt and records it as ``nextRetryAt``. The policy only
decides the delay and whether another attempt is allowed.

- Fixed delay
- Linear backoff:      delay = base_delay * attempt
- Exponential backoff: delay = base_delay * 2 ** (attempt - 1), with optional jitter

Usage:
    strategy = RetryStrategy.from_node_config({"maxRetries": 5, "retryDelay": 10,
                                               "backoff": "exponential"})
    if strategy.should_retry(retry_count):
        delay = strategy.compute_delay(retry_count + 1)
"""

import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 60.0


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    NONE = "none"


@dataclass
class RetryStrategy:
    """Configurable retry strategy for a retry_on_failure node."""
    policy: RetryPolicy
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_RETRY_DELAY
    max_delay: float = 86400.0
    jitter: bool = False
    jitter_range: float = 0.5

    @classmethod
    def none(cls) -> 'RetryStrategy':
        """No retries — fail immediately."""
        return cls(policy=RetryPolicy.NONE, max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int = DEFAULT_MAX_RETRIES, delay: float = DEFAULT_RETRY_DELAY) -> 'RetryStrategy':
        """Fixed delay between retries."""
        return cls(policy=RetryPolicy.FIXED, max_retries=max_retries, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 3600.0,
        jitter: bool = False,
    ) -> 'RetryStrategy':
        """Exponential backoff with optional jitter."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def linear(cls, max_retries: int = 5, base_delay: float = 2.0, max_delay: float = 3600.0) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * attempt_number."""
        return cls(
            policy=RetryPolicy.LINEAR,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
        )

    @classmethod
    def from_node_config(cls, config: dict) -> 'RetryStrategy':
        """Build a strategy from a retry_on_failure node's config.

        ``backoff`` may be a preset name, a policy name or a mapping with ``policy``,
        ``maxDelay`` and ``jitter``. Without it the policy is FIXED.
        """
        backoff: Any = config.get("backoff") or {}
        if isinstance(backoff, str):
            if backoff in RETRY_PRESETS:
                return replace(RETRY_PRESETS[backoff])
            backoff = {"policy": backoff}
        policy = str(backoff.get("policy") or RetryPolicy.FIXED.value).lower()
        return cls(
            policy=RetryPolicy(policy),
            max_retries=int(config.get("maxRetries", DEFAULT_MAX_RETRIES)),
            base_delay=float(config.get("retryDelay", DEFAULT_RETRY_DELAY)),
            max_delay=float(backoff.get("maxDelay", 86400.0)),
            jitter=bool(backoff.get("jitter", False)),
            jitter_range=float(backoff.get("jitterRange", 0.5)),
        )

    def to_dict(self) -> dict:
        return {
            "policy": self.policy.value,
            "maxRetries": self.max_retries,
            "retryDelay": self.base_delay,
            "maxDelay": self.max_delay,
            "jitter": self.jitter,
        }

    def compute_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Compute the delay in seconds for a given attempt number (1-based)."""
        if self.policy == RetryPolicy.NONE:
            return 0.0

        if self.policy == RetryPolicy.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        elif self.policy == RetryPolicy.LINEAR:
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = delay + (rng or random).uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, delay)

        return round(delay, 3)

    def should_retry(self, retry_count: int) -> bool:
        """Whether another attempt is allowed after ``retry_count`` retries."""
        if self.policy == RetryPolicy.NONE:
            return False
        return retry_count < self.max_retries


# ─── Preset strategies ───

RETRY_PRESETS: dict[str, RetryStrategy] = {
    'none': RetryStrategy.none(),
    'conservative': RetryStrategy.exponential(max_retries=3, base_delay=30.0, max_delay=600.0),
    'aggressive': RetryStrategy.exponential(max_retries=7, base_delay=5.0, max_delay=1800.0),
    'api_call': RetryStrategy.exponential(max_retries=5, base_delay=10.0, max_delay=900.0),
    'email': RetryStrategy.linear(max_retries=3, base_delay=300.0, max_delay=3600.0),
}
