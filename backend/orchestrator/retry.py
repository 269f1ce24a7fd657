"""
Retry policy helpers for deferred capture start.

Purpose:
- Centralize the bounded listen-retry rules
- Keep reducer pure

A listen request made before the session is ACTIVE is re-checked on a fixed
delay. After LISTEN_RETRY_MAX_ATTEMPTS checks without reaching ACTIVE the
request is abandoned and reported as an error.

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import LISTEN_RETRY_DELAY_MS, LISTEN_RETRY_MAX_ATTEMPTS


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial request (no retry tick yet).
    - attempt >= 1 represents the Nth elapsed retry delay.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Advance to the next retry attempt."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def should_retry_listen(attempt: RetryAttempt) -> bool:
    """
    Returns True if another retry delay may be armed.

    attempt = number of retry delays already elapsed
    """
    return attempt.attempt < LISTEN_RETRY_MAX_ATTEMPTS


def get_listen_retry_delay_ms(attempt: RetryAttempt) -> int:  # pylint: disable=unused-argument
    """Fixed delay between listen retries."""
    return LISTEN_RETRY_DELAY_MS
