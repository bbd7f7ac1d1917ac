from typing import Callable, Any
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)
from loguru import logger
import asyncio
import httpx

from services.exceptions import InputValidationError


class RetryConfig:
    def __init__(
        self, max_attempts: int = 3, min_backoff: float = 1.0, max_backoff: float = 4.0
    ):
        # max_attempts counts the initial call, so 3 means two retries.
        self.max_attempts = max_attempts
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff


def tenacity_retry_decorator(retry_config: RetryConfig):
    """Return a tenacity retry decorator for network-backed model calls.

    Only exceptions accepted by :func:`is_retryable_exception` are retried.
    """

    def _decorator(fn: Callable[..., Any]):
        return retry(
            stop=stop_after_attempt(retry_config.max_attempts),
            wait=wait_exponential(
                multiplier=1, min=retry_config.min_backoff, max=retry_config.max_backoff
            ),
            retry=retry_if_exception(is_retryable_exception),
            before_sleep=before_sleep_log(logger, "WARNING"),
            reraise=True,
        )(fn)

    return _decorator


def classify_error(exc: BaseException) -> str:
    """Map an exception to one of rate_limit, timeout, server_error or error.

    Typed transport exceptions are checked first, then the message text,
    since most vendor SDKs only surface the status code in the message.
    """
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "timeout"

    status = getattr(exc, "status_code", None)
    if status == 429:
        return "rate_limit"
    if isinstance(status, int) and 500 <= status <= 504:
        return "server_error"

    msg = str(exc).lower()

    if "429" in msg or "rate limit" in msg or "quota" in msg:
        return "rate_limit"
    if "timeout" in msg or "timed out" in msg:
        return "timeout"
    if any(code in msg for code in ("500", "502", "503", "504")):
        return "server_error"

    return "error"


def is_retryable_exception(exc: BaseException) -> bool:
    """Lightweight classifier deciding whether a model call is worth retrying."""
    if isinstance(exc, InputValidationError):
        return False
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return True
    if isinstance(exc, (httpx.ConnectError, httpx.NetworkError)):
        return True

    status = getattr(exc, "status_code", None)
    # Authentication and bad requests will not get better on retry
    if status in (400, 401, 403, 404, 422):
        return False

    return classify_error(exc) != "error"
