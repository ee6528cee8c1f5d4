# tests/test_rate_limit.py
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from accessaudit.features.scan.services.admission.admission_controller import (
    AdmissionController,
    RateLimitResult,
)
from accessaudit.platform.exceptions import AtCapacityError, RateLimitedError


class TestRateLimit:
    def test_allows_up_to_limit_then_rejects(self, admission, test_settings):
        limit = test_settings.RATE_LIMIT_MAX_REQUESTS

        for i in range(limit):
            result = admission.check_rate_limit("203.0.113.7")
            assert result.allowed
            assert result.limit == limit
            assert result.remaining == limit - i - 1

        result = admission.check_rate_limit("203.0.113.7")
        assert not result.allowed
        assert result.remaining == 0

    def test_callers_are_limited_independently(self, admission, test_settings):
        for _ in range(test_settings.RATE_LIMIT_MAX_REQUESTS):
            admission.check_rate_limit("caller-a")

        assert not admission.check_rate_limit("caller-a").allowed
        assert admission.check_rate_limit("caller-b").allowed

    def test_window_slides(self, admission, test_settings, clock):
        for _ in range(test_settings.RATE_LIMIT_MAX_REQUESTS):
            admission.check_rate_limit("caller")
            clock.advance(60)

        assert not admission.check_rate_limit("caller").allowed

        # First request ages out of the window, freeing exactly one slot
        clock.advance(test_settings.RATE_LIMIT_WINDOW_SECONDS - 3 * 60 + 1)
        assert admission.check_rate_limit("caller").allowed
        assert not admission.check_rate_limit("caller").allowed

    def test_rejected_requests_do_not_extend_the_window(self, admission, test_settings, clock):
        for _ in range(test_settings.RATE_LIMIT_MAX_REQUESTS):
            admission.check_rate_limit("caller")

        # Hammering while limited must not push the reset further out
        for _ in range(10):
            clock.advance(10)
            assert not admission.check_rate_limit("caller").allowed

        clock.advance(test_settings.RATE_LIMIT_WINDOW_SECONDS)
        assert admission.check_rate_limit("caller").allowed

    def test_enforce_raises_with_retry_after(self, admission, test_settings, clock):
        for _ in range(test_settings.RATE_LIMIT_MAX_REQUESTS):
            admission.enforce_rate_limit("caller")

        clock.advance(100)
        with pytest.raises(RateLimitedError) as exc_info:
            admission.enforce_rate_limit("caller")

        error = exc_info.value
        assert error.status_code == 429
        assert error.retry_after == test_settings.RATE_LIMIT_WINDOW_SECONDS - 100
        assert error.headers()["Retry-After"] == str(error.retry_after)
        assert error.headers()["X-RateLimit-Limit"] == str(test_settings.RATE_LIMIT_MAX_REQUESTS)
        assert error.headers()["X-RateLimit-Remaining"] == "0"

    def test_inactive_outside_production_unless_enabled(self, memory_store, test_settings, clock):
        config = test_settings.model_copy(update={"RATE_LIMIT_ENABLED": False})
        controller = AdmissionController(store=memory_store, config=config, clock=clock)

        for _ in range(config.RATE_LIMIT_MAX_REQUESTS + 5):
            result = controller.check_rate_limit("caller")
            assert result.allowed
            assert result.limit is None

    def test_always_active_in_production(self, memory_store, test_settings, clock):
        config = test_settings.model_copy(
            update={"RATE_LIMIT_ENABLED": False, "ENVIRONMENT": "production"}
        )
        controller = AdmissionController(store=memory_store, config=config, clock=clock)

        for _ in range(config.RATE_LIMIT_MAX_REQUESTS):
            controller.check_rate_limit("caller")
        assert not controller.check_rate_limit("caller").allowed

    def test_no_store_allows_everything(self, test_settings):
        controller = AdmissionController(store=None, config=test_settings)

        for _ in range(test_settings.RATE_LIMIT_MAX_REQUESTS * 3):
            assert controller.check_rate_limit("caller").allowed

    def test_store_error_degrades_open(self, test_settings):
        store = MagicMock()
        store.window_add.side_effect = RedisConnectionError("connection refused")
        controller = AdmissionController(store=store, config=test_settings)

        result = controller.enforce_rate_limit("caller")
        assert result.allowed

    def test_retry_after_defaults_to_an_hour_without_reset(self):
        assert RateLimitResult(allowed=False).retry_after(now=0) == 3600

    def test_retry_after_is_at_least_one_second(self):
        assert RateLimitResult(allowed=False, reset_at=100.0).retry_after(now=100.0) == 1


class TestConcurrencySlots:
    def test_admits_up_to_cap_then_rejects(self, admission, test_settings, memory_store):
        cap = test_settings.MAX_CONCURRENT_SCANS

        for _ in range(cap):
            assert admission.acquire_concurrency_slot()

        assert not admission.acquire_concurrency_slot()
        # The rejected attempt gave its increment back
        assert memory_store.get(test_settings.CONCURRENCY_KEY) == cap

    def test_release_frees_a_slot(self, admission, test_settings):
        for _ in range(test_settings.MAX_CONCURRENT_SCANS):
            admission.acquire_concurrency_slot()

        admission.release_concurrency_slot()
        assert admission.acquire_concurrency_slot()

    def test_release_never_goes_negative(self, admission, test_settings, memory_store):
        admission.release_concurrency_slot()
        admission.release_concurrency_slot()
        assert memory_store.get(test_settings.CONCURRENCY_KEY) == 0

        # Stray releases must not grant extra capacity
        for _ in range(test_settings.MAX_CONCURRENT_SCANS):
            assert admission.acquire_concurrency_slot()
        assert not admission.acquire_concurrency_slot()

    def test_counter_expires_after_ttl(self, admission, test_settings, clock):
        for _ in range(test_settings.MAX_CONCURRENT_SCANS):
            admission.acquire_concurrency_slot()
        assert not admission.acquire_concurrency_slot()

        # Slots leaked by crashed workers are reclaimed by the TTL
        clock.advance(test_settings.CONCURRENCY_TTL_SECONDS + 1)
        assert admission.acquire_concurrency_slot()

    def test_context_manager_releases_on_error(self, admission, test_settings, memory_store):
        with pytest.raises(ValueError):
            with admission.concurrency_slot():
                assert memory_store.get(test_settings.CONCURRENCY_KEY) == 1
                raise ValueError("scan failed")

        assert memory_store.get(test_settings.CONCURRENCY_KEY) == 0

    def test_context_manager_raises_at_capacity(self, admission, test_settings, memory_store):
        for _ in range(test_settings.MAX_CONCURRENT_SCANS):
            admission.acquire_concurrency_slot()

        with pytest.raises(AtCapacityError) as exc_info:
            with admission.concurrency_slot():
                pytest.fail("body must not run when at capacity")

        assert exc_info.value.status_code == 503
        assert memory_store.get(test_settings.CONCURRENCY_KEY) == test_settings.MAX_CONCURRENT_SCANS

    def test_no_store_admits_everything(self, test_settings):
        controller = AdmissionController(store=None, config=test_settings)

        for _ in range(test_settings.MAX_CONCURRENT_SCANS * 3):
            assert controller.acquire_concurrency_slot()
        controller.release_concurrency_slot()

    def test_store_error_admits_and_release_is_quiet(self, test_settings):
        store = MagicMock()
        store.incr.side_effect = RedisConnectionError("connection refused")
        store.decr_floor.side_effect = RedisConnectionError("connection refused")
        controller = AdmissionController(store=store, config=test_settings)

        with controller.concurrency_slot():
            pass

        store.decr_floor.assert_called_once_with(test_settings.CONCURRENCY_KEY)

    def test_failed_give_back_still_rejects(self, test_settings):
        store = MagicMock()
        store.incr.return_value = test_settings.MAX_CONCURRENT_SCANS + 1
        store.decr.side_effect = RedisConnectionError("connection reset")
        controller = AdmissionController(store=store, config=test_settings)

        assert not controller.acquire_concurrency_slot()
        store.decr.assert_called_once_with(test_settings.CONCURRENCY_KEY)

    def test_failed_give_back_raises_at_capacity(self, test_settings):
        store = MagicMock()
        store.incr.return_value = test_settings.MAX_CONCURRENT_SCANS + 1
        store.decr.side_effect = RedisConnectionError("connection reset")
        controller = AdmissionController(store=store, config=test_settings)

        with pytest.raises(AtCapacityError):
            with controller.concurrency_slot():
                pytest.fail("body must not run when at capacity")

        store.decr_floor.assert_not_called()
