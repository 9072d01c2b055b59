"""Retry policy shared by the remote transports."""

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finfree.config import get_settings
from finfree.services.storage.interface import TransportError


def transport_retry():
    """
    Exponential-backoff retry for transport calls.

    Only TransportError is retried. AuthorizationError and validation
    problems surface on the first attempt. The last error is re-raised.
    """
    settings = get_settings().sync
    return retry(
        stop=stop_after_attempt(settings.retry_attempts),
        wait=wait_exponential(
            multiplier=1,
            min=settings.retry_min_wait_seconds,
            max=settings.retry_max_wait_seconds,
        ),
        retry=retry_if_exception_type(TransportError),
        reraise=True,
    )
