"""TCP端口依赖检查器"""

import asyncio
import time

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult


@register_checker('tcp')
class TcpHealthChecker(BaseHealthChecker):
    """检查上游依赖的TCP端口能否在超时内建立连接"""

    def validate_config(self) -> bool:
        if not self.config.get('host'):
            return False
        port = self.config.get('port')
        return isinstance(port, int) and 0 < port <= 65535

    async def check_health(self) -> ProbeResult:
        host = self.config['host']
        port = self.config['port']
        start_time = time.monotonic()
        error = None

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.get_timeout())
            writer.close()
            await writer.wait_closed()
        except asyncio.TimeoutError:
            error = f"连接 {host}:{port} 超时"
        except OSError as e:
            error = f"连接 {host}:{port} 失败: {e}"

        return ProbeResult(
            service_name=self.name,
            healthy=error is None,
            latency=time.monotonic() - start_time,
            error=error,
            metadata={'host': host, 'port': port}
        )
