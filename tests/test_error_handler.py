"""重试与轮询机制测试"""

import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from health_orchestrator.utils.error_handler import (
    RetryConfig, RetryHandler, RetryStrategy, poll_until, retry_on_error
)
from health_orchestrator.utils.exceptions import OrchestratorError, ConfigError


class TestRetryConfig:
    """重试配置测试"""

    def test_invalid_values(self):
        """测试无效配置"""
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(base_delay=-1)
        with pytest.raises(ValueError):
            RetryConfig(attempt_timeout=0)


class TestRetryHandler:
    """重试处理器测试"""

    def test_fixed_delay(self):
        handler = RetryHandler(RetryConfig(base_delay=2.0))
        assert handler.calculate_delay(1) == 2.0
        assert handler.calculate_delay(5) == 2.0

    def test_exponential_backoff(self):
        handler = RetryHandler(RetryConfig(
            base_delay=1.0, strategy=RetryStrategy.EXPONENTIAL_BACKOFF, max_delay=5.0))
        assert handler.calculate_delay(1) == 1.0
        assert handler.calculate_delay(2) == 2.0
        assert handler.calculate_delay(3) == 4.0
        assert handler.calculate_delay(4) == 5.0

    def test_linear_backoff(self):
        handler = RetryHandler(RetryConfig(base_delay=1.5, strategy=RetryStrategy.LINEAR_BACKOFF))
        assert handler.calculate_delay(3) == 4.5

    def test_should_retry(self):
        """测试可重试判断"""
        handler = RetryHandler(RetryConfig(max_attempts=3))

        assert handler.should_retry(ConnectionError(), 1) is True
        assert handler.should_retry(ValueError(), 1) is False
        assert handler.should_retry(OrchestratorError("x"), 1) is True
        assert handler.should_retry(ConfigError("x"), 1) is False
        assert handler.should_retry(ConnectionError(), 3) is False

    def test_should_retry_custom_errors(self):
        handler = RetryHandler(RetryConfig(retryable_errors=(KeyError,)))
        assert handler.should_retry(KeyError(), 1) is True
        assert handler.should_retry(ConnectionError(), 1) is False


class TestPollUntil:
    """有界轮询测试"""

    @pytest.mark.asyncio
    async def test_succeeds_first_attempt(self):
        attempt_fn = AsyncMock(return_value=True)

        done, value, attempts = await poll_until(
            attempt_fn, lambda v: v, RetryConfig(max_attempts=5, base_delay=0))

        assert done is True
        assert value is True
        assert attempts == 1
        attempt_fn.assert_called_once()

    @pytest.mark.asyncio
    async def test_exhausts_attempts(self):
        """测试达到最大尝试次数"""
        attempt_fn = AsyncMock(return_value='down')
        seen = []

        done, value, attempts = await poll_until(
            attempt_fn, lambda v: v == 'up', RetryConfig(max_attempts=3, base_delay=0),
            on_attempt=lambda n, v: seen.append(n))

        assert done is False
        assert value == 'down'
        assert attempts == 3
        assert attempt_fn.call_count == 3
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_exception_counts_as_failed_attempt(self):
        """测试异常视为单次失败"""
        attempt_fn = AsyncMock(side_effect=[ConnectionError("refused"), 'up'])

        done, value, attempts = await poll_until(
            attempt_fn, lambda v: v == 'up', RetryConfig(max_attempts=3, base_delay=0))

        assert done is True
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        """测试单次尝试超时"""
        async def slow():
            await asyncio.sleep(1)
            return 'up'

        done, value, attempts = await poll_until(
            slow, lambda v: True,
            RetryConfig(max_attempts=2, base_delay=0, attempt_timeout=0.01))

        assert done is False
        assert value is None
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_orchestrator_error_propagates(self):
        """测试配置类异常不被吞掉"""
        attempt_fn = AsyncMock(side_effect=ConfigError("bad"))

        with pytest.raises(ConfigError):
            await poll_until(attempt_fn, lambda v: True, RetryConfig(max_attempts=3, base_delay=0))
        attempt_fn.assert_called_once()

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        """测试两次尝试之间按间隔等待"""
        attempt_fn = AsyncMock(return_value='down')

        with patch('health_orchestrator.utils.error_handler.asyncio.sleep',
                   new_callable=AsyncMock) as mock_sleep:
            await poll_until(attempt_fn, lambda v: False,
                             RetryConfig(max_attempts=3, base_delay=2.0))

        assert mock_sleep.call_count == 2
        mock_sleep.assert_called_with(2.0)


class TestRetryOnError:
    """重试装饰器测试"""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = []

        @retry_on_error(max_attempts=3, base_delay=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return 'ok'

        assert await flaky() == 'ok'
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        calls = []

        @retry_on_error(max_attempts=3, base_delay=0)
        async def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        @retry_on_error(max_attempts=2, base_delay=0, retryable_errors=[KeyError])
        async def always_fails():
            calls.append(1)
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await always_fails()
        assert len(calls) == 2
