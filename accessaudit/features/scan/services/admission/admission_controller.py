import math
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

from pydantic import BaseModel
from redis.exceptions import RedisError

from accessaudit.features.scan.services.admission.counter_store import (
    CounterStore,
    build_counter_store,
)
from accessaudit.platform.config import Settings, settings as default_settings
from accessaudit.platform.exceptions import AtCapacityError, RateLimitedError
from accessaudit.platform.logger import get_logger

logger = get_logger(__name__)


class RateLimitResult(BaseModel):
    allowed: bool
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[float] = None

    def retry_after(self, now: Optional[float] = None) -> int:
        if self.reset_at is None:
            return 3600
        now = time.time() if now is None else now
        return max(1, math.ceil(self.reset_at - now))


class AdmissionController:
    """
    Two independent gates in front of the browser capacity:

    - a per-caller sliding-window rate limit
    - a global concurrency slot counter with a self-healing TTL

    Without a shared store both gates admit everything (degrade open).
    """

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        config: Optional[Settings] = None,
        clock=time.time,
    ):
        self.config = config or default_settings
        self.store = store
        self._clock = clock

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "AdmissionController":
        config = config or default_settings
        store = build_counter_store(config.REDIS_URL, config.FORCE_IN_MEMORY_COUNTER_STORE)
        return cls(store=store, config=config)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def check_rate_limit(self, caller_id: str) -> RateLimitResult:
        if self.store is None or not self.config.rate_limit_active:
            return RateLimitResult(allowed=True)

        limit = self.config.RATE_LIMIT_MAX_REQUESTS
        window = self.config.RATE_LIMIT_WINDOW_SECONDS
        key = f"{self.config.RATE_LIMIT_PREFIX}:{caller_id}"
        now = self._clock()
        member = f"{now}:{uuid.uuid4().hex}"

        try:
            count, oldest = self.store.window_add(key, member, now, window)
            if count > limit:
                # Rejected requests don't occupy the window
                self.store.window_remove(key, member)
        except RedisError as e:
            logger.warning(f"Rate limit store unavailable, allowing request: {e}")
            return RateLimitResult(allowed=True)

        allowed = count <= limit
        remaining = max(0, limit - min(count, limit))
        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=remaining,
            reset_at=oldest + window,
        )
        if not allowed:
            logger.warning(f"Rate limit exceeded for {caller_id} ({limit}/{window}s)")
        return result

    def enforce_rate_limit(self, caller_id: str) -> RateLimitResult:
        result = self.check_rate_limit(caller_id)
        if not result.allowed:
            raise RateLimitedError(
                retry_after=result.retry_after(self._clock()),
                limit=result.limit,
                remaining=result.remaining,
            )
        return result

    # ------------------------------------------------------------------
    # Concurrency slots
    # ------------------------------------------------------------------

    def acquire_concurrency_slot(self) -> bool:
        if self.store is None:
            return True

        key = self.config.CONCURRENCY_KEY
        try:
            count = self.store.incr(key, self.config.CONCURRENCY_TTL_SECONDS)
        except RedisError as e:
            logger.warning(f"Concurrency store unavailable, admitting scan: {e}")
            return True

        if count <= self.config.MAX_CONCURRENT_SCANS:
            return True

        # Over capacity: give back the slot we just took
        try:
            self.store.decr(key)
        except RedisError as e:
            # The key TTL reclaims the extra increment
            logger.warning(f"Could not give back concurrency slot: {e}")
        logger.warning(f"Concurrency cap reached ({self.config.MAX_CONCURRENT_SCANS})")
        return False

    def release_concurrency_slot(self) -> None:
        """Safe to call without a matching acquire; the counter never goes negative."""
        if self.store is None:
            return

        try:
            self.store.decr_floor(self.config.CONCURRENCY_KEY)
        except RedisError as e:
            # The key TTL reclaims the slot
            logger.warning(f"Failed to release concurrency slot: {e}")

    @contextmanager
    def concurrency_slot(self) -> Iterator[None]:
        if not self.acquire_concurrency_slot():
            raise AtCapacityError()
        try:
            yield
        finally:
            self.release_concurrency_slot()
