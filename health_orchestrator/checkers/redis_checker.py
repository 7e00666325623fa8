"""Redis依赖检查器"""

import time

import redis.asyncio as redis

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult


@register_checker('redis')
class RedisHealthChecker(BaseHealthChecker):
    """通过 PING 确认上游 Redis 可用"""

    def validate_config(self) -> bool:
        if 'host' not in self.config:
            return False

        port = self.config.get('port', 6379)
        if not isinstance(port, int) or port <= 0 or port > 65535:
            return False

        database = self.config.get('database', 0)
        if not isinstance(database, int) or database < 0:
            return False

        return True

    async def check_health(self) -> ProbeResult:
        start_time = time.monotonic()
        error = None
        metadata = {}

        client = redis.Redis(
            host=self.config.get('host', 'localhost'),
            port=self.config.get('port', 6379),
            db=self.config.get('database', 0),
            password=self.config.get('password'),
            socket_timeout=self.get_timeout(),
            socket_connect_timeout=self.get_timeout(),
            decode_responses=True
        )

        try:
            ping_start = time.monotonic()
            if await client.ping():
                metadata['ping_time'] = time.monotonic() - ping_start
            else:
                error = "PING命令返回False"
        except redis.AuthenticationError as e:
            error = f"Redis认证失败: {e}"
        except redis.TimeoutError as e:
            error = f"Redis连接超时: {e}"
        except redis.ConnectionError as e:
            error = f"Redis连接错误: {e}"
        except redis.RedisError as e:
            error = f"Redis响应错误: {e}"
        finally:
            try:
                await client.aclose()
            except redis.RedisError as e:
                self.logger.warning(f"关闭Redis客户端连接时出错: {e}")

        if error:
            self.logger.warning(f"Redis依赖 {self.name} 检查失败: {error}")

        return ProbeResult(
            service_name=self.name,
            healthy=error is None,
            latency=time.monotonic() - start_time,
            error=error,
            metadata=metadata
        )
