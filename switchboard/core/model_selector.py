"""
Rate-Limit-Aware Model Selector

Two interchangeable model tiers, ``primary`` and ``fallback``. A rate-limit
error puts the tier into a cooldown (2s, 4s, 8s by consecutive failures);
the selector prefers primary, uses fallback while primary cools down, and
backs off with jitter when both are cooling down. A successful call resets
the counter of the tier that served it, and only that tier.

Usage:
    selector = ModelSelector(models={"primary": ..., "fallback": ...}, state=ModelTierState())
    text = await selector.run(lambda model: call_model(model))
"""

import asyncio
import logging
import random
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .config import ModelConfig, RetryConfig, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

COOLDOWN_BASE_SECONDS = 2.0
COOLDOWN_MAX_EXPONENT = 2


class ModelTier(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class ModelTiersExhaustedError(Exception):
    """Every tier stayed rate limited through the whole retry budget."""
    pass


def is_rate_limit_error(error: BaseException) -> bool:
    """Detect rate limiting from status codes or message text."""
    for attr in ("status_code", "status"):
        if getattr(error, attr, None) == 429:
            return True

    response = getattr(error, "response", None)
    if response is not None and getattr(response, "status_code", None) == 429:
        return True

    text = str(error)
    return "429" in text or "Too Many Requests" in text or "rate limit" in text.lower()


def calculate_backoff_delay(attempt: int, retry: RetryConfig, rand: Callable[[], float] = random.random) -> int:
    """Backoff in milliseconds for a 1-based attempt: initial * 2^(attempt-1), capped, +/- jitter."""
    exponential = retry.initial_delay_ms * (2 ** (attempt - 1))
    capped = min(exponential, retry.max_delay_ms)
    jitter = capped * (rand() - 0.5) * 2 * retry.jitter_factor
    return round(capped + jitter)


def cooldown_seconds(consecutive_failures: int) -> float:
    exponent = min(max(consecutive_failures - 1, 0), COOLDOWN_MAX_EXPONENT)
    return COOLDOWN_BASE_SECONDS * (2 ** exponent)


# =============================================================================
# Tier State
# =============================================================================

@dataclass
class TierState:
    consecutive_failures: int = 0
    cooldown_until: Optional[float] = None


class ModelTierState:
    """Process-wide failure/cooldown bookkeeping, guarded by a lock.

    Owned by whoever builds the selector and passed in explicitly, so tests
    and concurrent requests never share hidden module globals.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._tiers: Dict[ModelTier, TierState] = {tier: TierState() for tier in ModelTier}

    def is_cooling_down(self, tier: ModelTier) -> bool:
        with self._lock:
            state = self._tiers[tier]
            if state.cooldown_until is None:
                return False
            if state.cooldown_until > self._clock():
                return True
            # Cooldown over: healthy again, failure count kept until a success
            state.cooldown_until = None
            logger.info(f"[ModelSelector] {tier.value} cooldown expired")
            return False

    def record_rate_limit(self, tier: ModelTier) -> float:
        """Count a rate-limit failure and start the tier's cooldown.

        Returns:
            Cooldown length in seconds
        """
        with self._lock:
            state = self._tiers[tier]
            state.consecutive_failures += 1
            delay = cooldown_seconds(state.consecutive_failures)
            state.cooldown_until = self._clock() + delay
            failures = state.consecutive_failures

        logger.warning(
            f"[ModelSelector] {tier.value} hit rate limit, cooldown {delay:.0f}s "
            f"(consecutive failures: {failures})"
        )
        return delay

    def record_success(self, tier: ModelTier) -> None:
        with self._lock:
            state = self._tiers[tier]
            had_failures = state.consecutive_failures > 0
            state.consecutive_failures = 0
            state.cooldown_until = None
        if had_failures:
            logger.info(f"[ModelSelector] {tier.value} recovered, failure counter reset")

    def consecutive_failures(self, tier: ModelTier) -> int:
        with self._lock:
            return self._tiers[tier].consecutive_failures

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {tier.value: vars(replace(state)) for tier, state in self._tiers.items()}

    def clear(self, tier: Optional[ModelTier] = None) -> None:
        with self._lock:
            for t in ([tier] if tier else list(ModelTier)):
                self._tiers[t] = TierState()


# =============================================================================
# Selector
# =============================================================================

class ModelSelector:
    """Chooses a tier per call and runs the call with failover."""

    def __init__(
        self,
        models: Dict[ModelTier, ModelConfig],
        state: ModelTierState,
        retry: Optional[RetryConfig] = None,
        force_tier: Optional[ModelTier] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.models = models
        self.state = state
        self.retry = retry or RetryConfig()
        self.force_tier = force_tier
        self._sleep = sleep
        self._rand = rand

    def select_tier(self) -> Optional[ModelTier]:
        """Preferred healthy tier, or None when both are cooling down."""
        if self.force_tier is not None:
            return self.force_tier
        if not self.state.is_cooling_down(ModelTier.PRIMARY):
            return ModelTier.PRIMARY
        if not self.state.is_cooling_down(ModelTier.FALLBACK):
            return ModelTier.FALLBACK
        return None

    async def run(self, call: Callable[[ModelConfig, ModelTier], Awaitable[T]]) -> T:
        """Run ``call`` on the selected tier, failing over on rate limits.

        Non-rate-limit errors propagate immediately. Rate limits switch tier;
        when both tiers are cooling down the primary tier is retried after an
        exponential backoff, up to ``retry.max_retries`` times.

        Raises:
            ModelTiersExhaustedError: When the retry budget is spent
        """
        backoff_attempt = 0
        last_error: Optional[BaseException] = None
        # One call per tier plus the backoff retries
        max_calls = len(ModelTier) + self.retry.max_retries

        for _ in range(max_calls):
            tier = self.select_tier()
            if tier is None:
                backoff_attempt += 1
                if backoff_attempt > self.retry.max_retries:
                    break
                delay_ms = calculate_backoff_delay(backoff_attempt, self.retry, self._rand)
                logger.warning(
                    f"[ModelSelector] All tiers cooling down, retrying primary in {delay_ms}ms "
                    f"(attempt {backoff_attempt}/{self.retry.max_retries})"
                )
                await self._sleep(delay_ms / 1000)
                tier = ModelTier.PRIMARY

            model = self.models[tier]
            try:
                result = await call(model, tier)
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                last_error = e
                self.state.record_rate_limit(tier)
                continue

            self.state.record_success(tier)
            return result

        raise ModelTiersExhaustedError(
            f"All model tiers rate limited after {backoff_attempt} backoff retries: {last_error}"
        ) from last_error


# =============================================================================
# Global Instance
# =============================================================================

_tier_state = ModelTierState()


def get_model_selector() -> ModelSelector:
    """Selector over the configured tiers, sharing the process-wide tier state."""
    config = get_config()
    force = config.llm.force_tier
    return ModelSelector(
        models={ModelTier.PRIMARY: config.llm.primary, ModelTier.FALLBACK: config.llm.fallback},
        state=_tier_state,
        retry=config.retry,
        force_tier=ModelTier(force) if force else None,
    )


def get_tier_state() -> ModelTierState:
    return _tier_state
