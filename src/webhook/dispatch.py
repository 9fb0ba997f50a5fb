"""Authenticated dispatch of step requests with timeout and bounded retry.

Retries on 429 (rate limit), 5xx (server error) and per-attempt timeouts.
Delay between attempts: min(max_delay, initial_delay * multiplier ** attempt).
Total attempts are max_retries + 1.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from src.config import RetryPolicy
from src.models import Step

logger = logging.getLogger(__name__)

_ERROR_TEXT_LIMIT = 500


class StepDispatchError(Exception):
    """Raised when N8N answers a step request with a non-success status."""

    def __init__(
        self, step: Step | str, status_code: int, reason: str, text: str,
    ) -> None:
        self.step = Step(step).value
        self.status_code = status_code
        self.reason = reason
        self.text = text
        super().__init__(
            f"N8N step request failed: {status_code} {reason} - {text}"
        )


class StepTimeoutError(Exception):
    """Raised when every attempt of a step request timed out."""

    def __init__(self, step: Step | str, timeout_seconds: float) -> None:
        self.step = Step(step).value
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request timeout after {timeout_seconds:g}s")


def compute_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay in milliseconds before retry number ``attempt + 1``."""
    delay = policy.initial_delay_ms * policy.multiplier ** attempt
    return float(min(policy.max_delay_ms, delay))


def should_retry(status_code: int) -> bool:
    """Only retry on 429 (rate limit) or 5xx (server error)."""
    return status_code == 429 or status_code >= 500


class StepDispatcher:
    """Sends one signed step request, retrying with exponential backoff."""

    def __init__(
        self,
        policy: RetryPolicy,
        client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._policy = policy
        self._client_factory = client_factory
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def dispatch(
        self, step: Step, url: str, body: bytes, headers: dict[str, str],
    ) -> httpx.Response:
        """POST the body to url and return the successful response.

        Every attempt re-sends the same signed bytes with its own timeout.
        """
        policy = self._policy
        step = Step(step)

        async with self._client_factory() as client:
            for attempt in range(policy.max_retries + 1):
                can_retry = attempt < policy.max_retries
                try:
                    # Deadline covers the whole attempt, body download included.
                    async with asyncio.timeout(policy.timeout_seconds):
                        resp = await client.post(
                            url,
                            content=body,
                            headers=headers,
                            timeout=policy.timeout_seconds,
                        )
                except (httpx.TimeoutException, TimeoutError):
                    if not can_retry:
                        logger.error(
                            "N8N step request timed out step=%s timeout=%ss attempts=%d",
                            step.value, policy.timeout_seconds, attempt + 1,
                        )
                        raise StepTimeoutError(step, policy.timeout_seconds) from None
                    delay = compute_backoff_delay(attempt, policy)
                    logger.warning(
                        "Request timeout, retrying step=%s delay_ms=%s attempt=%d max_retries=%d",
                        step.value, delay, attempt + 1, policy.max_retries,
                    )
                    await self._sleep(delay / 1000)
                    continue

                if should_retry(resp.status_code) and can_retry:
                    delay = compute_backoff_delay(attempt, policy)
                    label = (
                        "Rate limited, retrying" if resp.status_code == 429
                        else "Server error, retrying"
                    )
                    logger.warning(
                        "%s step=%s status=%d delay_ms=%s attempt=%d max_retries=%d",
                        label, step.value, resp.status_code, delay,
                        attempt + 1, policy.max_retries,
                    )
                    await self._sleep(delay / 1000)
                    continue

                if resp.is_success:
                    return resp

                text = resp.text
                logger.error(
                    "N8N step request failed step=%s status=%d reason=%s text=%s",
                    step.value, resp.status_code, resp.reason_phrase,
                    text[:_ERROR_TEXT_LIMIT],
                )
                raise StepDispatchError(step, resp.status_code, resp.reason_phrase, text)

        raise AssertionError("unreachable: retry loop exited without a result")
