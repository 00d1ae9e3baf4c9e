"""Error classification and retry policy.

This module provides:
- classify_error: Decide whether a failed remote call may be retried
- RetryCounter: Bounded failure counter of one logical operation
- call_with_retry: Execute a remote call under a RetryCounter
- classify_upload_status: Map a resumable session answer to a status class
- backoff_delay: Exponential backoff delay for chunk retries

Retry decisions are made from the exception type only:

| Exception                                   | Decision |
|---------------------------------------------|----------|
| httpx.TransportError, httpx.DecodingError   | RETRY    |
| APIError (not NotFound, not Authentication) | RETRY    |
| OSError, RuntimeError                       | RETRY    |
| anything else                               | FATAL    |
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import IntEnum, auto
from typing import TypeVar

import httpx

from drivemirror.client.api import APIError, AuthenticationError, NotFoundError
from drivemirror.core.config import DEFAULT_MAX_BACKOFF, DEFAULT_MAX_RETRIES

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryDecision(IntEnum):
    """What to do after a failed remote call."""

    RETRY = auto()
    FATAL = auto()


class UploadStatusClass(IntEnum):
    """Classification of a resumable session answer."""

    SUCCESS = auto()  # 200/201, upload complete
    INCOMPLETE = auto()  # 308, more bytes expected
    UNAUTHORIZED = auto()  # 401, token must be renewed
    NOT_FOUND = auto()  # 404, session is gone
    TRANSIENT = auto()  # 5xx, 429 or no answer at all
    UNEXPECTED = auto()


def classify_error(error: BaseException) -> RetryDecision:
    """Decide whether a failed call may be retried.

    Args:
        error: Exception raised by the call.

    Returns:
        RETRY for transient I/O and server failures, FATAL otherwise.
    """
    if isinstance(error, (NotFoundError, AuthenticationError)):
        return RetryDecision.FATAL
    if isinstance(error, (httpx.TransportError, httpx.DecodingError, APIError)):
        return RetryDecision.RETRY
    if isinstance(error, (OSError, RuntimeError)):
        return RetryDecision.RETRY
    return RetryDecision.FATAL


def classify_upload_status(status_code: int | None) -> UploadStatusClass:
    """Classify the status code of a resumable session call.

    Args:
        status_code: HTTP status, or None when the request failed in transport.

    Returns:
        The status class.
    """
    if status_code is None:
        return UploadStatusClass.TRANSIENT
    if status_code in (200, 201):
        return UploadStatusClass.SUCCESS
    if status_code == 308:
        return UploadStatusClass.INCOMPLETE
    if status_code == 401:
        return UploadStatusClass.UNAUTHORIZED
    if status_code == 404:
        return UploadStatusClass.NOT_FOUND
    if status_code == 429 or 500 <= status_code < 600:
        return UploadStatusClass.TRANSIENT
    return UploadStatusClass.UNEXPECTED


def backoff_delay(attempt: int, max_backoff: float = DEFAULT_MAX_BACKOFF) -> float:
    """Get the sleep time before retry number attempt (starting at 1)."""
    return float(min(2**attempt, max_backoff))


class RetryCounter:
    """Bounded failure counter of one logical operation.

    The remote calls of one operation, such as uploading a file, share a
    counter. Separate operations never share one.

    The count only grows. Once it has reached the ceiling, the next
    failure is reported as exhausted.
    """

    def __init__(self, ceiling: int = DEFAULT_MAX_RETRIES) -> None:
        self.ceiling = ceiling
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def record_failure(self) -> bool:
        """Count one failure.

        Returns:
            True if the ceiling was already reached.
        """
        with self._lock:
            exhausted = self._count >= self.ceiling
            self._count += 1
            return exhausted


def call_with_retry(
    func: Callable[[], T],
    counter: RetryCounter | None = None,
    description: str = "remote call",
) -> T:
    """Execute a remote call, retrying transient failures.

    Retries are immediate. Each transient failure is recorded on the
    counter; when it is exhausted the failure propagates.

    Args:
        func: Call to execute.
        counter: Counter of the enclosing operation (a fresh one is used if
            omitted).
        description: What the call does, for log messages.

    Returns:
        Result of the call.

    Raises:
        The call's exception if it is fatal or retries are exhausted.
    """
    if counter is None:
        counter = RetryCounter()

    while True:
        try:
            return func()
        except Exception as e:
            if classify_error(e) is RetryDecision.FATAL:
                raise
            if counter.record_failure():
                logger.error(f"Giving up on {description} after {counter.ceiling} retries: {e}")
                raise
            logger.warning(
                f"Attempt {counter.count}/{counter.ceiling} failed for {description}: {e}. "
                f"Retrying..."
            )
