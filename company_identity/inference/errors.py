"""
Inference error taxonomy.

Provider failures are either retryable (timeouts, connection errors, rate
limits, 5xx) or fatal (authentication, permission, bad request, other
4xx). The batched client retries the first kind with backoff and gives up
on the second immediately.
"""

import asyncio

import openai


class InferenceError(Exception):
    """Base class for inference provider failures."""


class RetryableInferenceError(InferenceError):
    """Transient failure; the same request may succeed later."""


class FatalInferenceError(InferenceError):
    """Failure that retrying cannot fix (bad credentials, invalid request)."""


_RETRYABLE_STATUS = {408, 409, 429}


def classify_exception(exc: BaseException) -> InferenceError:
    """
    Map any exception raised by a provider call onto the taxonomy.

    Exceptions that are not recognized are treated as retryable; the
    attempt limit still bounds how often they are retried.
    """
    if isinstance(exc, InferenceError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return RetryableInferenceError(f"timed out: {exc}" if str(exc) else "timed out")
    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return RetryableInferenceError(f"connection error: {exc}")
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status >= 500 or status in _RETRYABLE_STATUS:
            return RetryableInferenceError(f"HTTP {status}: {exc}")
        return FatalInferenceError(f"HTTP {status}: {exc}")
    if isinstance(exc, (ValueError, TypeError)):
        return FatalInferenceError(f"invalid request: {exc}")
    return RetryableInferenceError(f"{type(exc).__name__}: {exc}")
