"""HTTP健康探测测试"""

import asyncio
import aiohttp
import pytest
from unittest.mock import patch

from health_orchestrator.checkers.http_probe import (
    HttpHealthProbe, HttpDependencyChecker, probe_url
)
from health_orchestrator.models.health_check import ServiceSpec, BODY_SNIPPET_LIMIT
from health_orchestrator.utils.exceptions import ProbeError

SESSION_PATH = 'health_orchestrator.checkers.http_probe.aiohttp.ClientSession'


class TestProbeUrl:
    """单次探测测试"""

    @pytest.mark.asyncio
    async def test_healthy(self, http_session):
        session_ctx = http_session(200, '{"status":"ok"}')
        with patch(SESSION_PATH, return_value=session_ctx):
            result = await probe_url('api', 'http://127.0.0.1/health', 5,
                                     expected_content='"status":"ok"')

        assert result.healthy is True
        assert result.status_code == 200
        assert result.error is None
        session_ctx.session.request.assert_called_once_with(
            'GET', 'http://127.0.0.1/health', headers={})

    @pytest.mark.asyncio
    async def test_non_2xx_status(self, http_session):
        with patch(SESSION_PATH, return_value=http_session(503, 'unavailable')):
            result = await probe_url('api', 'http://127.0.0.1/health', 5)

        assert result.healthy is False
        assert result.status_code == 503
        assert '503' in result.error

    @pytest.mark.asyncio
    async def test_expected_status(self, http_session):
        """测试指定期望状态码"""
        with patch(SESSION_PATH, return_value=http_session(204)):
            result = await probe_url('api', 'http://127.0.0.1/ping', 5, expected_status=204)
        assert result.healthy is True

        with patch(SESSION_PATH, return_value=http_session(200)):
            result = await probe_url('api', 'http://127.0.0.1/ping', 5, expected_status=204)
        assert result.healthy is False

    @pytest.mark.asyncio
    async def test_missing_expected_content(self, http_session):
        with patch(SESSION_PATH, return_value=http_session(200, '{"status":"degraded"}')):
            result = await probe_url('api', 'http://127.0.0.1/health', 5,
                                     expected_content='"status":"ok"')

        assert result.healthy is False
        assert result.metadata['content_validation'] == 'failed'

    @pytest.mark.asyncio
    async def test_slow_response(self, http_session):
        """测试响应时间超过上限"""
        with patch(SESSION_PATH, return_value=http_session(200, 'ok')), \
                patch('health_orchestrator.checkers.http_probe.time') as mock_time:
            mock_time.monotonic.side_effect = [0.0, 3.0, 3.0]
            result = await probe_url('api', 'http://127.0.0.1/health', 5, max_response_time=2)

        assert result.healthy is False
        assert result.metadata['slow_response'] is True
        assert '超过上限' in result.error

    @pytest.mark.asyncio
    async def test_timeout(self, http_session):
        with patch(SESSION_PATH, return_value=http_session(error=asyncio.TimeoutError())):
            result = await probe_url('api', 'http://127.0.0.1/health', 2)

        assert result.healthy is False
        assert result.status_code is None
        assert '超时' in result.error

    @pytest.mark.asyncio
    async def test_connection_error(self, http_session):
        error = aiohttp.ClientConnectionError('connection refused')
        with patch(SESSION_PATH, return_value=http_session(error=error)):
            result = await probe_url('api', 'http://127.0.0.1/health', 2)

        assert result.healthy is False
        assert 'connection refused' in result.error

    @pytest.mark.asyncio
    async def test_body_truncated(self, http_session):
        with patch(SESSION_PATH, return_value=http_session(200, 'x' * 2000)):
            result = await probe_url('api', 'http://127.0.0.1/health', 2)

        assert len(result.body) == BODY_SNIPPET_LIMIT

    @pytest.mark.asyncio
    async def test_non_utf8_body_stays_healthy(self, http_session):
        """测试响应体不是合法 UTF-8 时按替换字符解码"""
        session_ctx = http_session(200, b'\xff\xfe OK \x80')
        with patch(SESSION_PATH, return_value=session_ctx):
            result = await probe_url('api', 'http://127.0.0.1/health', 2,
                                     expected_content='OK')

        assert result.healthy is True
        assert result.error is None
        assert 'OK' in result.body
        assert '�' in result.body

    @pytest.mark.asyncio
    async def test_invalid_target_raises(self):
        """测试探测配置本身无效时抛出异常"""
        with pytest.raises(ProbeError):
            await probe_url('api', 'tcp://127.0.0.1:80', 2)
        with pytest.raises(ProbeError):
            await probe_url('api', 'http://127.0.0.1/health', 0)


class TestHttpHealthProbe:
    """服务探测器测试"""

    @pytest.mark.asyncio
    async def test_probe_uses_spec(self, http_session):
        spec = ServiceSpec(name='api', health_check_url='http://127.0.0.1/health',
                           method='HEAD', headers=(('Host', 'api.local'),))
        session_ctx = http_session(200)

        with patch(SESSION_PATH, return_value=session_ctx):
            result = await HttpHealthProbe().probe(spec)

        assert result.service_name == 'api'
        assert result.healthy is True
        session_ctx.session.request.assert_called_once_with(
            'HEAD', 'http://127.0.0.1/health', headers={'Host': 'api.local'})


class TestHttpDependencyChecker:
    """HTTP依赖检查器测试"""

    def test_validate_config(self):
        assert HttpDependencyChecker('auth', {'url': 'https://auth/health'}).validate_config()
        assert not HttpDependencyChecker('auth', {'url': 'auth'}).validate_config()
        assert not HttpDependencyChecker(
            'auth', {'url': 'https://auth/health', 'expected_status': 1000}).validate_config()

    @pytest.mark.asyncio
    async def test_check_health(self, http_session):
        checker = HttpDependencyChecker('auth', {'type': 'http', 'url': 'https://auth/health'})

        with patch(SESSION_PATH, return_value=http_session(200)):
            result = await checker.check_health()

        assert result.service_name == 'auth'
        assert result.healthy is True
