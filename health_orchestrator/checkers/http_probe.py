"""HTTP健康探测器"""

import asyncio
import time
from typing import Dict, Any, Optional

import aiohttp

from .base import BaseHealthChecker
from .factory import register_checker
from ..models.health_check import ProbeResult, ServiceSpec, BODY_SNIPPET_LIMIT
from ..utils.exceptions import ProbeError
from ..utils.log_manager import get_logger


def _validate_probe_target(name: str, url: str, timeout: float):
    if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
        raise ProbeError(f"服务 {name} 的健康检查地址无效: {url!r}", service_name=name)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ProbeError(f"服务 {name} 的超时时间必须为正数: {timeout!r}", service_name=name)


async def probe_url(
        name: str,
        url: str,
        timeout: float,
        max_response_time: Optional[float] = None,
        expected_content: Optional[str] = None,
        expected_status: Optional[int] = None,
        method: str = 'GET',
        headers: Optional[Dict[str, str]] = None
) -> ProbeResult:
    """
    对一个地址执行一次有超时约束的HTTP探测并分类结果

    判定为不健康的情况（按顺序）：传输错误或超时、状态码不在 [200,300)
    （或不等于 expected_status）、响应时间超过 max_response_time、
    响应内容不包含 expected_content。上述情况只体现在结果中，不抛异常。

    Raises:
        ProbeError: 地址或超时配置本身无效
    """
    _validate_probe_target(name, url, timeout)

    start_time = time.monotonic()
    status_code = None
    error = None
    body = ''
    healthy = False
    metadata: Dict[str, Any] = {}

    try:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(method, url, headers=headers or {}) as response:
                status_code = response.status
                body = await response.text(errors='replace')
                latency = time.monotonic() - start_time

                if expected_status is not None:
                    status_ok = status_code == expected_status
                else:
                    status_ok = 200 <= status_code < 300

                if not status_ok:
                    error = f"HTTP状态码不符合期望: {status_code}"
                elif max_response_time is not None and latency > max_response_time:
                    error = f"响应时间 {latency:.3f}s 超过上限 {max_response_time}s"
                    metadata['slow_response'] = True
                elif expected_content and expected_content not in body:
                    error = f"响应内容缺少期望标记: {expected_content!r}"
                    metadata['content_validation'] = 'failed'
                else:
                    healthy = True

    except asyncio.TimeoutError:
        error = f"HTTP请求超时 ({timeout}s)"
    except aiohttp.ClientError as e:
        error = f"HTTP客户端错误: {e}"
    except OSError as e:
        error = f"网络错误: {e}"

    return ProbeResult(
        service_name=name,
        healthy=healthy,
        latency=time.monotonic() - start_time,
        status_code=status_code,
        error=error,
        body=body[:BODY_SNIPPET_LIMIT],
        metadata=metadata
    )


class HttpHealthProbe:
    """服务健康探测器，对 ServiceSpec 执行单次探测"""

    def __init__(self):
        self.logger = get_logger('probe.http')

    async def probe(self, spec: ServiceSpec) -> ProbeResult:
        """
        执行一次健康探测

        Args:
            spec: 服务描述

        Returns:
            ProbeResult: 探测结果，失败同样以结果返回
        """
        result = await probe_url(
            spec.name,
            spec.health_check_url,
            spec.timeout,
            max_response_time=spec.max_response_time,
            expected_content=spec.expected_content,
            method=spec.method,
            headers=dict(spec.headers)
        )
        if result.healthy:
            self.logger.debug(f"服务 {spec.name} 探测健康, 响应时间: {result.latency:.3f}s")
        else:
            self.logger.info(f"服务 {spec.name} 探测不健康: {result.error}")
        return result


@register_checker('http')
class HttpDependencyChecker(BaseHealthChecker):
    """上游HTTP依赖检查器"""

    def validate_config(self) -> bool:
        url = self.config.get('url')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            return False
        expected_status = self.config.get('expected_status')
        if expected_status is not None and not (
                isinstance(expected_status, int) and 100 <= expected_status <= 599):
            return False
        return True

    async def check_health(self) -> ProbeResult:
        return await probe_url(
            self.name,
            self.config['url'],
            self.get_timeout(),
            expected_content=self.config.get('expected_content'),
            expected_status=self.config.get('expected_status')
        )
