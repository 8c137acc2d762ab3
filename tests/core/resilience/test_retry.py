"""Tests for the bounded retry policy."""

from unittest.mock import AsyncMock, patch

import pytest

from core.errors.exceptions import (
    CredentialError,
    NotFoundError,
    OperationCancelled,
    ServiceUnavailableError,
    ThrottlingError,
)
from core.resilience.cancellation import CancellationToken
from core.resilience.retry import RetryConfig, retry_async


class TestRetryConfig:
    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 2
        assert config.backoff == "linear"

    def test_linear_delay_grows_with_attempt(self):
        config = RetryConfig(base_delay=1.0, backoff="linear")
        assert config.delay_for(1) == 1.0
        assert config.delay_for(3) == 3.0

    def test_fixed_delay(self):
        config = RetryConfig(base_delay=1.5, backoff="fixed")
        assert config.delay_for(4) == 1.5

    def test_throttle_uses_throttle_delay(self):
        config = RetryConfig(base_delay=1.0, throttle_delay=2.0, backoff="fixed")
        assert config.delay_for(1, ThrottlingError("429")) == 2.0

    def test_throttle_honours_retry_after_capped(self):
        config = RetryConfig(max_delay=10.0)
        assert config.delay_for(1, ThrottlingError("429", retry_after=4)) == 4
        assert config.delay_for(1, ThrottlingError("429", retry_after=99)) == 10.0

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(backoff="exponential")


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        operation = AsyncMock(return_value="ok")
        assert await retry_async(operation, RetryConfig(max_attempts=3)) == "ok"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        operation = AsyncMock(side_effect=[ServiceUnavailableError("503"), "ok"])
        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry_async(operation, RetryConfig(max_attempts=2, base_delay=1.0))
        assert result == "ok"
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        operation = AsyncMock(side_effect=ServiceUnavailableError("503"))
        with patch("core.resilience.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ServiceUnavailableError):
                await retry_async(operation, RetryConfig(max_attempts=3))
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        operation = AsyncMock(side_effect=NotFoundError("404"))
        with pytest.raises(NotFoundError):
            await retry_async(operation, RetryConfig(max_attempts=5))
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self):
        operation = AsyncMock(side_effect=CredentialError("bad key"))
        with pytest.raises(CredentialError):
            await retry_async(operation, RetryConfig(max_attempts=5))
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_stops_before_attempt(self):
        token = CancellationToken()
        token.cancel()
        operation = AsyncMock(return_value="ok")
        with pytest.raises(OperationCancelled):
            await retry_async(operation, RetryConfig(), token=token)
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_sleep_uses_token(self):
        token = CancellationToken()
        operation = AsyncMock(side_effect=[ThrottlingError("429"), "ok"])
        with patch.object(token, "sleep", new=AsyncMock()) as sleep:
            assert await retry_async(operation, RetryConfig(), token=token) == "ok"
        sleep.assert_awaited_once_with(2.0)
