"""
Tests for the retry helper and configuration.

Run with: pytest tests/test_retry.py -v
"""
import pytest
from unittest.mock import AsyncMock, patch

from multipost.core.config import ClientConfig, RetryPolicy
from multipost.core.errors import CDPConnectionError, CDPProtocolError
from multipost.utils.retry import retry


# =============================================================================
# retry()
# =============================================================================

class TestRetry:
    """Tests for exponential backoff."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        operation = AsyncMock(side_effect=[CDPConnectionError("down"), CDPConnectionError("down"), "ok"])
        with patch("multipost.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry(operation, RetryPolicy(max_attempts=3, initial_delay=0.5))

        assert result == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        operation = AsyncMock(side_effect=CDPProtocolError("no such method"))
        with patch("multipost.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(CDPProtocolError):
                await retry(operation, retry_on=(CDPConnectionError,))

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_raises_last_error(self):
        errors = [CDPConnectionError(f"attempt {i}") for i in range(3)]
        operation = AsyncMock(side_effect=errors)
        with patch("multipost.utils.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(CDPConnectionError) as exc_info:
                await retry(operation, RetryPolicy(max_attempts=3))

        assert exc_info.value is errors[-1]

    def test_max_attempts_includes_first_call(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.retries == 2
        assert len(list(policy.delays())) == 2

    @pytest.mark.asyncio
    async def test_with_retries_counts_retries_only(self):
        policy = RetryPolicy.with_retries(3, initial_delay=0.1)
        assert policy.max_attempts == 4
        assert policy.initial_delay == 0.1

        operation = AsyncMock(side_effect=CDPConnectionError("down"))
        with patch("multipost.utils.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            with pytest.raises(CDPConnectionError):
                await retry(operation, policy)

        assert operation.await_count == 4
        assert sleep.await_count == 3

    def test_delays_are_capped(self):
        policy = RetryPolicy(max_attempts=5, initial_delay=1.0, max_delay=3.0, backoff_multiplier=2.0)
        assert list(policy.delays()) == [1.0, 2.0, 3.0, 3.0]


# =============================================================================
# ClientConfig
# =============================================================================

class TestClientConfig:
    """Tests for configuration defaults and environment loading."""

    def test_defaults(self):
        config = ClientConfig()
        assert config.call_timeout == 30.0
        assert config.port_range_start == 9222
        assert config.port_range_end == 9230
        assert config.connect_attempts == 30
        assert config.profile_dir.endswith("multi-platform-publish-profile")

    def test_from_env(self):
        config = ClientConfig.from_env({
            "MULTI_PLATFORM_CHROME_PATH": "/opt/chrome/chrome",
            "MULTI_PLATFORM_CDP_PORT": "9333",
            "MULTI_PLATFORM_CALL_TIMEOUT": "12.5",
            "MULTI_PLATFORM_DEBUG": "true",
        })
        assert config.chrome_path == "/opt/chrome/chrome"
        assert config.port == 9333
        assert config.call_timeout == 12.5
        assert config.debug is True

    def test_overrides_win_over_env(self):
        config = ClientConfig.from_env({"MULTI_PLATFORM_CDP_PORT": "9333"}, port=9400)
        assert config.port == 9400

    @pytest.mark.parametrize("kwargs", [
        {"transport": "pipe"},
        {"call_timeout": 0},
        {"port_range_start": 9230, "port_range_end": 9222},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ClientConfig(**kwargs)

    def test_connect_policy_is_fixed_interval(self):
        config = ClientConfig(connect_attempts=4, connect_retry_delay=0.2)
        assert list(config.connect_policy.delays()) == [0.2, 0.2, 0.2]
