"""重试与轮询机制

提供有界重试原语：健康监控的单次探测与部署阶段的健康轮询
使用同一个 poll_until，参数为 (最大尝试次数, 间隔, 单次超时)。
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Awaitable, Callable, Optional, List, Tuple, TypeVar

from .exceptions import OrchestratorError

T = TypeVar('T')
logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """重试策略"""
    FIXED_DELAY = "fixed_delay"
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"


@dataclass(frozen=True)
class RetryConfig:
    """重试配置

    Attributes:
        max_attempts: 最大尝试次数（至少1次）
        base_delay: 两次尝试之间的基础间隔（秒）
        attempt_timeout: 单次尝试的超时时间（秒），None 表示由调用方自行约束
        strategy: 间隔计算策略
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    attempt_timeout: Optional[float] = None
    strategy: RetryStrategy = RetryStrategy.FIXED_DELAY
    backoff_multiplier: float = 2.0
    jitter: bool = False
    retryable_errors: Optional[Tuple[type, ...]] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts 必须大于等于1")
        if self.base_delay < 0:
            raise ValueError("base_delay 不能为负数")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout 必须为正数")


class RetryHandler:
    """重试处理器"""

    def __init__(self, config: RetryConfig):
        self.config = config

    def calculate_delay(self, attempt: int) -> float:
        """计算第 attempt 次尝试失败后的等待时间"""
        if self.config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.config.base_delay * (
                self.config.backoff_multiplier ** (attempt - 1))
        elif self.config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.config.base_delay * attempt
        else:
            delay = self.config.base_delay

        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """判断是否应该重试"""
        if attempt >= self.config.max_attempts:
            return False

        if self.config.retryable_errors:
            return isinstance(error, self.config.retryable_errors)

        if isinstance(error, OrchestratorError):
            return error.recoverable

        return isinstance(error, (ConnectionError, TimeoutError, OSError,
                                  asyncio.TimeoutError))


async def poll_until(
        attempt_fn: Callable[[], Awaitable[T]],
        is_done: Callable[[T], bool],
        config: RetryConfig,
        on_attempt: Optional[Callable[[int, Optional[T]], None]] = None
) -> Tuple[bool, Optional[T], int]:
    """有界轮询

    最多调用 attempt_fn ``max_attempts`` 次，直到 is_done 返回 True。
    单次调用超过 attempt_timeout 视为该次失败；attempt_fn 抛出的异常
    同样视为该次失败并记录日志，不会向上传播。

    Args:
        attempt_fn: 单次尝试的协程函数
        is_done: 判断尝试结果是否满足条件
        config: 重试配置
        on_attempt: 每次尝试后的回调，参数为 (尝试序号, 结果)

    Returns:
        (是否成功, 最后一次结果, 实际尝试次数)
    """
    handler = RetryHandler(config)
    last_value: Optional[T] = None

    for attempt in range(1, config.max_attempts + 1):
        value: Optional[T] = None
        try:
            if config.attempt_timeout is not None:
                value = await asyncio.wait_for(attempt_fn(), timeout=config.attempt_timeout)
            else:
                value = await attempt_fn()
        except asyncio.TimeoutError:
            logger.debug(f"第 {attempt}/{config.max_attempts} 次尝试超时")
        except asyncio.CancelledError:
            raise
        except OrchestratorError:
            raise
        except Exception as e:
            logger.warning(f"第 {attempt}/{config.max_attempts} 次尝试异常: {e}")

        if value is not None:
            last_value = value

        if on_attempt:
            on_attempt(attempt, value)

        if value is not None and is_done(value):
            return True, value, attempt

        if attempt < config.max_attempts:
            await asyncio.sleep(handler.calculate_delay(attempt))

    return False, last_value, config.max_attempts


def retry_on_error(
        max_attempts: int = 3,
        base_delay: float = 1.0,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF,
        retryable_errors: Optional[List[type]] = None
):
    """异步函数重试装饰器"""
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        strategy=strategy,
        retryable_errors=tuple(retryable_errors) if retryable_errors else None
    )
    retry_handler = RetryHandler(config)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as error:
                    if not retry_handler.should_retry(error, attempt):
                        logger.warning(
                            f"函数 {func.__name__} 错误不可重试或达到最大重试次数: {error}")
                        raise

                    delay = retry_handler.calculate_delay(attempt)
                    logger.warning(
                        f"函数 {func.__name__} 执行失败 (尝试 {attempt}/{config.max_attempts}): "
                        f"{error}，{delay:.2f}秒后重试"
                    )
                    await asyncio.sleep(delay)

        return async_wrapper

    return decorator
