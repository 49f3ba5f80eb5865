"""
Retry logic for the DRACOON client.

Defines the retry policy (clamped into the bounds in constants.py) and
the functions that determine whether to retry based on the type of exceptions raised.
Functions are used with stamina's (package) retry_context.
"""

import logging
from dataclasses import dataclass

import httpx
import stamina

from dracoon_client.constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_MIN_RETRY_DELAY,
    MAX_MAX_RETRIES,
    MAX_MAX_RETRY_DELAY,
    MAX_MIN_RETRY_DELAY,
    MIN_MAX_RETRIES,
    MIN_MAX_RETRY_DELAY,
    MIN_MIN_RETRY_DELAY,
)
from dracoon_client.exceptions import DracoonClientError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy applied to idempotent requests (token, upload channel, presigned urls, finalize, status).
    Delays are in milliseconds. Use RetryPolicy.create to get a clamped policy.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    min_delay_ms: int = DEFAULT_MIN_RETRY_DELAY
    max_delay_ms: int = DEFAULT_MAX_RETRY_DELAY

    @classmethod
    def create(
        cls,
        max_retries: int | None = None,
        min_delay_ms: int | None = None,
        max_delay_ms: int | None = None,
    ) -> "RetryPolicy":
        """
        Clamp each value into its allowed range, values left as None use the defaults.
        If the minimum delay ends up above the maximum delay, it is lowered to the maximum.
        """
        max_retries = _clamp(
            DEFAULT_MAX_RETRIES if max_retries is None else max_retries, MIN_MAX_RETRIES, MAX_MAX_RETRIES
        )
        min_delay_ms = _clamp(
            DEFAULT_MIN_RETRY_DELAY if min_delay_ms is None else min_delay_ms,
            MIN_MIN_RETRY_DELAY,
            MAX_MIN_RETRY_DELAY,
        )
        max_delay_ms = _clamp(
            DEFAULT_MAX_RETRY_DELAY if max_delay_ms is None else max_delay_ms,
            MIN_MAX_RETRY_DELAY,
            MAX_MAX_RETRY_DELAY,
        )
        if min_delay_ms > max_delay_ms:
            logger.debug(f"Minimum retry delay {min_delay_ms} ms above maximum {max_delay_ms} ms, lowering it.")
            min_delay_ms = max_delay_ms

        return cls(max_retries=max_retries, min_delay_ms=min_delay_ms, max_delay_ms=max_delay_ms)

    def retry_context(self, on=None):
        """
        stamina retry context for this policy, use as:

            async for attempt in policy.retry_context():
                with attempt:
                    ...

        The first try is not a retry, so stamina gets max_retries + 1 attempts.
        """
        return stamina.retry_context(
            on=on or retry_only_on_retryable_errors,
            attempts=self.max_retries + 1,
            timeout=None,
            wait_initial=self.min_delay_ms / 1000,
            wait_max=self.max_delay_ms / 1000,
        )


def retry_only_on_retryable_errors(exc: Exception) -> bool:
    """
    Retry condition for requests made by the client:
    raw transport errors and client errors (API or token endpoint) with a server error (5xx) or rate limiting (429) status.
    """
    if isinstance(exc, DracoonClientError):
        return exc.status_code in RETRYABLE_STATUS_CODES

    # timeouts, connection errors etc.
    return isinstance(exc, httpx.HTTPError)
