import asyncio
import random
from typing import Optional, Tuple, Type

import httpx

from utils.logger import get_logger

logger = get_logger("retry")


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff: str = "linear",
        exponential_base: float = 2.0,
        jitter: bool = False,
        retryable_exceptions: Tuple[Type[Exception], ...] = (
            httpx.TimeoutException,
            httpx.NetworkError,
            httpx.RemoteProtocolError,
            ConnectionError,
            asyncio.TimeoutError,
        ),
        retryable_status_codes: Tuple[int, ...] = (429, 500, 502, 503, 504),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if backoff not in ("linear", "exponential"):
            raise ValueError("backoff must be 'linear' or 'exponential'")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff = backoff
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions
        self.retryable_status_codes = retryable_status_codes


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay to sleep after the 1-based ``attempt`` failed.

    Linear backoff waits ``attempt * base_delay`` (100ms, 200ms, ...);
    exponential waits ``base_delay * exponential_base ** (attempt - 1)``.
    """
    if config.backoff == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay = delay * (0.5 + random.random())
    return delay


def is_retryable_error(error: Exception, config: RetryConfig) -> bool:
    """Check if an error should be retried"""
    if isinstance(error, config.retryable_exceptions):
        return True

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in config.retryable_status_codes or status >= 500

    return False


class RetryableClient:
    """HTTP client wrapper that retries transient upstream failures.

    4xx responses (other than 429) fail immediately with
    ``httpx.HTTPStatusError``; 5xx, 429 and transport faults are retried with
    backoff, and the last error is raised once attempts are exhausted.
    """

    def __init__(self, client: httpx.AsyncClient, config: Optional[RetryConfig] = None):
        self.client = client
        self.config = config or RetryConfig()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
            except Exception as e:
                last_error = e

                if not is_retryable_error(e, self.config):
                    raise

                if attempt < self.config.max_attempts:
                    delay = calculate_delay(attempt, self.config)

                    if isinstance(e, httpx.HTTPStatusError) and e.response.status_code == 429:
                        retry_after = e.response.headers.get("Retry-After")
                        if retry_after:
                            try:
                                delay = max(delay, float(retry_after))
                            except ValueError:
                                pass

                    logger.warning(
                        "Retrying HTTP request",
                        method=method,
                        url=url,
                        attempt=attempt,
                        max_attempts=self.config.max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "All retry attempts exhausted",
                        method=method,
                        url=url,
                        attempts=self.config.max_attempts,
                        error=str(e),
                    )

        raise last_error

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)
