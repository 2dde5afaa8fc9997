"""Resilience utilities for external service calls.

- Retry Logic: Handles transient export failures
"""

from fieldcapture.resilience.retry import retry_with_backoff, RetryConfig

__all__ = [
    "retry_with_backoff",
    "RetryConfig",
]
