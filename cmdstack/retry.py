"""Exponential backoff around provider generation."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable

from .config import RetryConfig
from .llm import CommandProvider, EmptyResponseError, ProviderConnectionError, ProviderError, ProviderResponseError
from .logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 0
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.1

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=max(0, int(config.max_retries)),
            base_delay=max(0.0, float(config.base_delay)),
            max_delay=max(0.0, float(config.max_delay)),
        )

    def delay(self, attempt: int) -> float:
        base = min(self.base_delay * (2 ** attempt), self.max_delay)
        return base + random.uniform(0, base * self.jitter)


def is_retryable(exc: BaseException) -> bool:
    """Transient failures only: network errors, throttling, 5xx and empty output."""

    if isinstance(exc, (ProviderConnectionError, EmptyResponseError)):
        return True
    if isinstance(exc, ProviderResponseError):
        status = exc.status_code
        return status is not None and (status == 429 or status >= 500)
    return False


def generate_with_retry(
    provider: CommandProvider,
    system_prompt: str,
    user_prompt: str,
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    attempt = 0
    while True:
        try:
            return provider.generate(system_prompt, user_prompt)
        except ProviderError as exc:
            if attempt >= policy.max_retries or not is_retryable(exc):
                raise
            wait = policy.delay(attempt)
            attempt += 1
            LOGGER.info(
                "%s failed (%s); retry %d/%d in %.1fs",
                provider.name,
                exc,
                attempt,
                policy.max_retries,
                wait,
            )
            sleep(wait)
