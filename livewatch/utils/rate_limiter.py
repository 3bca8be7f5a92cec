"""Rate limiting for remote API calls."""

import asyncio
import time
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class RateLimitBucket:
    """Token bucket for rate limiting."""

    capacity: int
    tokens: float
    last_refill: float
    refill_rate: float  # tokens per second

    def refill(self, now: float) -> None:
        elapsed = now - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, tokens: int = 1) -> bool:
        """Try to consume tokens from the bucket.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if tokens were consumed, False otherwise
        """
        self.refill(time.monotonic())

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True

        return False

    def time_until_available(self, tokens: int = 1) -> float:
        """Seconds until the requested tokens become available."""
        if self.tokens >= tokens:
            return 0.0

        return (tokens - self.tokens) / self.refill_rate


class RateLimiter:
    """Token bucket rate limiter keyed by API scope (e.g. "live", "feed")."""

    def __init__(self, requests_per_minute: int = 60) -> None:
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute per scope
        """
        self.requests_per_minute = requests_per_minute
        self.buckets: dict[str, RateLimitBucket] = {}
        self._lock = asyncio.Lock()

        logger.info("Initialized RateLimiter", requests_per_minute=requests_per_minute)

    async def _get_or_create_bucket(self, scope: str) -> RateLimitBucket:
        async with self._lock:
            if scope not in self.buckets:
                capacity = max(5, self.requests_per_minute // 6)  # Allow bursts
                refill_rate = self.requests_per_minute / 60.0

                self.buckets[scope] = RateLimitBucket(
                    capacity=capacity,
                    tokens=capacity,
                    last_refill=time.monotonic(),
                    refill_rate=refill_rate,
                )

                logger.debug(
                    "Created rate limit bucket",
                    scope=scope,
                    capacity=capacity,
                    refill_rate=refill_rate,
                )

            return self.buckets[scope]

    async def acquire(self, scope: str, tokens: int = 1, timeout: float | None = None) -> bool:
        """Acquire tokens for a scope.

        Args:
            scope: Rate limit scope
            tokens: Number of tokens to acquire
            timeout: Maximum time to wait for tokens; None or 0 means do not wait

        Returns:
            True if tokens were acquired, False otherwise
        """
        bucket = await self._get_or_create_bucket(scope)

        if bucket.consume(tokens):
            return True

        if not timeout:
            logger.debug("Rate limit exceeded, not waiting", scope=scope, tokens=tokens)
            return False

        wait_time = bucket.time_until_available(tokens)
        if wait_time > timeout:
            logger.debug(
                "Rate limit wait time exceeds timeout",
                scope=scope,
                wait_time=wait_time,
                timeout=timeout,
            )
            return False

        await asyncio.sleep(wait_time)

        if bucket.consume(tokens):
            return True

        logger.warning("Failed to acquire rate limit tokens after waiting", scope=scope, tokens=tokens)
        return False

    def get_stats(self) -> dict[str, int]:
        """Get rate limiter statistics."""
        return {
            "active_buckets": len(self.buckets),
            "requests_per_minute": self.requests_per_minute,
        }
