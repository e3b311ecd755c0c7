"""Single retry policy for Azure API calls"""

import logging
from typing import Any, Callable

from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .logger import setup_logger

logger = setup_logger(__name__)

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}
MAX_DELAY_SECONDS = 60.0


def is_transient_error(error: BaseException) -> bool:
    """Timeouts, throttling and 5xx responses are worth another attempt"""
    if isinstance(error, ClientAuthenticationError):
        return False
    if isinstance(error, (ServiceRequestError, ServiceResponseError, TimeoutError, ConnectionError)):
        return True
    if isinstance(error, HttpResponseError):
        return error.status_code in TRANSIENT_STATUS_CODES
    return False


class RetryPolicy:
    """Bounded retry with exponential backoff, shared by every call site

    The first wait is delay_seconds and each later wait doubles, capped at
    MAX_DELAY_SECONDS.
    """

    def __init__(self, attempts: int = 3, delay_seconds: float = 5.0):
        self.attempts = max(1, attempts)
        self.delay_seconds = max(0.0, delay_seconds)

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception(is_transient_error),
            wait=wait_exponential(
                multiplier=self.delay_seconds,
                min=self.delay_seconds,
                max=max(self.delay_seconds, MAX_DELAY_SECONDS),
            ),
            stop=stop_after_attempt(self.attempts),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """Run func, retrying transient Azure errors; the last error is re-raised"""
        return self._retrying()(func, *args, **kwargs)

    def __repr__(self) -> str:
        return f"RetryPolicy(attempts={self.attempts}, delay_seconds={self.delay_seconds})"
