"""
Retry logic with exponential backoff for broker sends.

Retries belong to the transport: the publisher never retries on its own.
"""

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from messagepipe.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts
        retry_backoff_ms: Initial backoff in milliseconds
        retry_backoff_max_ms: Maximum backoff in milliseconds
        retry_jitter_ms: Random jitter to add to backoff
    """
    max_retries: int = 3
    retry_backoff_ms: int = 100
    retry_backoff_max_ms: int = 32000
    retry_jitter_ms: int = 20


class RetryableError(Exception):
    """Transient failure; anything else is treated as permanent."""
    pass


class RetryManager:
    """
    Manages retry logic with exponential backoff.

    Implements:
    - Exponential backoff: delay doubles each retry
    - Maximum backoff: caps delay at maximum
    - Random jitter: prevents thundering herd
    """

    def __init__(self, config: Optional[RetryConfig] = None, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize retry manager.

        Args:
            config: Retry configuration
            sleep: Sleep function (replaced in tests)
        """
        self.config = config or RetryConfig()
        self._sleep = sleep

    def execute_with_retry(self, operation: Callable[[], T], operation_name: str = "operation") -> T:
        """
        Execute operation with retry logic.

        Only RetryableError is retried; anything else propagates at once.

        Args:
            operation: Callable to execute
            operation_name: Name for logging

        Returns:
            Result from operation

        Raises:
            Exception: The last error once retries are exhausted
        """
        attempt = 0
        while True:
            try:
                result = operation()
            except RetryableError as e:
                if attempt >= self.config.max_retries:
                    logger.error(
                        f"{operation_name} failed after all retries",
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    raise

                backoff_ms = self._calculate_backoff(attempt)
                logger.warning(
                    f"{operation_name} failed, retrying",
                    attempt=attempt,
                    backoff_ms=backoff_ms,
                    error=str(e),
                )
                self._sleep(backoff_ms / 1000.0)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(f"{operation_name} succeeded after retry", attempt=attempt)

            return result

    def _calculate_backoff(self, attempt: int) -> int:
        """
        Calculate backoff delay with exponential growth and jitter.

        Formula: min(base * 2^attempt, max) + jitter
        """
        exponential_backoff = self.config.retry_backoff_ms * (2 ** attempt)
        backoff = min(exponential_backoff, self.config.retry_backoff_max_ms)
        jitter = random.randint(0, self.config.retry_jitter_ms)
        return backoff + jitter
