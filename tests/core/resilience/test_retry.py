"""Tests for retry logic with exponential backoff and jitter."""

from unittest.mock import AsyncMock, patch

import pytest

from core.errors.exceptions import PublishError, ServiceError
from core.resilience.retry import (
    DEFAULT_RETRY,
    RetryConfig,
    retry_async,
)


class TestRetryConfig:
    def test_default_values(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 0.5
        assert config.max_delay == 5.0
        assert config.respect_permanent is True

    def test_type_conversion_from_strings(self):
        """Values from YAML/env vars arrive as strings."""
        config = RetryConfig(max_attempts="5", base_delay="0.25", max_delay="10", exponential_base="3")
        assert config.max_attempts == 5
        assert config.base_delay == 0.25
        assert config.max_delay == 10.0
        assert config.exponential_base == 3.0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_from_dict_ignores_unknown_keys(self):
        config = RetryConfig.from_dict({"max_attempts": 4, "unrelated": True})
        assert config.max_attempts == 4

    def test_from_dict_none_gives_defaults(self):
        assert RetryConfig.from_dict(None) == RetryConfig()

    def test_exponential_backoff_with_equal_jitter(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=30.0)
        assert 0.5 <= config.get_delay(0) <= 1.0
        assert 1.0 <= config.get_delay(1) <= 2.0
        assert 2.0 <= config.get_delay(2) <= 4.0

    def test_delay_capped_at_max(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0)
        assert config.get_delay(10) == 3.0

    def test_should_retry_transient_until_budget_exhausted(self):
        config = RetryConfig(max_attempts=3)
        error = PublishError("broker down", topic="t")
        assert config.should_retry(error, 0)
        assert config.should_retry(error, 1)
        assert not config.should_retry(error, 2)

    def test_permanent_error_not_retried(self):
        assert not RetryConfig(max_attempts=5).should_retry(ServiceError("bad input"), 0)

    def test_never_retry_overrides_classification(self):
        config = RetryConfig(max_attempts=5, never_retry={ConnectionError})
        assert not config.should_retry(ConnectionError("refused"), 0)

    def test_default_preset(self):
        assert DEFAULT_RETRY.max_attempts == 3


class TestRetryAsync:
    @pytest.fixture(autouse=True)
    def no_sleep(self):
        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            yield sleep

    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        func = AsyncMock(return_value="ok")
        assert await retry_async(func) == "ok"
        func.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, no_sleep):
        func = AsyncMock(side_effect=[ConnectionError("refused"), "ok"])
        assert await retry_async(func, RetryConfig(max_attempts=3)) == "ok"
        assert func.await_count == 2
        no_sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reraises_last_error_unchanged(self):
        error = PublishError("still down", topic="t")
        func = AsyncMock(side_effect=error)

        with pytest.raises(PublishError) as exc_info:
            await retry_async(func, RetryConfig(max_attempts=3))

        assert exc_info.value is error
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_fails_fast(self):
        func = AsyncMock(side_effect=ServiceError("bad"))
        with pytest.raises(ServiceError):
            await retry_async(func, RetryConfig(max_attempts=5))
        func.assert_awaited_once()

