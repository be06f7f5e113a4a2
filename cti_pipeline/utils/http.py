"""
HTTP helper shared by collectors, the reasoning client and the translation
fallback provider.
"""

import logging
import time
from typing import Any, Callable, Optional, Type

import requests

from ..errors import PipelineError

logger = logging.getLogger(__name__)

MAX_RETRIES_CAP = 3


def request_with_retries(session: requests.Session,
                         method: str,
                         url: str,
                         *,
                         timeout: float,
                         max_retries: int = 2,
                         backoff_seconds: float = 2.0,
                         error_class: Type[PipelineError] = PipelineError,
                         sleep: Callable[[float], None] = time.sleep,
                         retry_on_status: tuple = (429, 500, 502, 503, 504),
                         raise_for_status: bool = True,
                         **kwargs: Any) -> requests.Response:
    """
    Perform an HTTP request with a hard timeout and exponential backoff.

    Args:
        session: requests session (or compatible object) used for the call
        method: HTTP method
        url: Target URL
        timeout: Hard timeout in seconds passed to requests
        max_retries: Retries after the first attempt, capped at 3
        backoff_seconds: Base delay, doubled after every failed attempt
        error_class: Exception type raised once retries are exhausted
        sleep: Sleep function, injectable for tests
        retry_on_status: Status codes considered transient
        raise_for_status: When False, an error response that survives the
            retries is returned so the caller can map its status code

    Returns:
        The successful response

    Raises:
        error_class: When every attempt failed (with raise_for_status, also
            on a final error status)
    """
    retries = max(0, min(max_retries, MAX_RETRIES_CAP))
    last_error: Optional[str] = None
    last_response: Optional[requests.Response] = None

    for attempt in range(retries + 1):
        last_response = None
        try:
            response = session.request(method, url, timeout=timeout, **kwargs)
            if response.status_code < 400:
                return response
            last_error = f"HTTP {response.status_code}"
            last_response = response
            if response.status_code not in retry_on_status:
                break
        except requests.Timeout:
            last_error = f"timeout after {timeout}s"
        except requests.RequestException as e:
            last_error = str(e)

        logger.warning(f"{method} {url} attempt {attempt + 1}/{retries + 1} failed: {last_error}")
        if attempt < retries:
            sleep(backoff_seconds * (2 ** attempt))

    if last_response is not None and not raise_for_status:
        return last_response
    raise error_class(f"{method} {url} failed: {last_error}")
