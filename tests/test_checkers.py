"""依赖检查器测试"""

import asyncio
import pytest
from unittest.mock import AsyncMock, Mock, patch
from redis.exceptions import AuthenticationError, ConnectionError as RedisConnectionError

from health_orchestrator.checkers.base import BaseHealthChecker
from health_orchestrator.checkers.factory import HealthCheckerFactory, health_checker_factory
from health_orchestrator.checkers.redis_checker import RedisHealthChecker
from health_orchestrator.checkers.tcp_checker import TcpHealthChecker
from health_orchestrator.models.health_check import ProbeResult
from health_orchestrator.utils.exceptions import ConfigError


class DummyChecker(BaseHealthChecker):
    """测试用检查器"""

    async def check_health(self) -> ProbeResult:
        return ProbeResult(service_name=self.name, healthy=True, latency=0.0)

    def validate_config(self) -> bool:
        return self.config.get('valid', True)


class TestHealthCheckerFactory:
    """检查器工厂测试"""

    def setup_method(self):
        self.factory = HealthCheckerFactory()
        self.factory.register_checker('dummy', DummyChecker)

    def test_builtin_types_registered(self):
        """测试内置依赖类型"""
        assert health_checker_factory.get_supported_types() == ['http', 'redis', 'tcp']

    def test_create_checker(self):
        checker = self.factory.create_checker('dep', {'type': 'dummy'})

        assert isinstance(checker, DummyChecker)
        assert checker.name == 'dep'
        assert checker.checker_type == 'dummy'
        assert checker.get_timeout() == 5.0

    def test_register_duplicate(self):
        with pytest.raises(ConfigError, match="已经注册"):
            self.factory.register_checker('dummy', DummyChecker)

    def test_register_invalid_class(self):
        with pytest.raises(ConfigError):
            self.factory.register_checker('bad', dict)

    def test_create_missing_type(self):
        with pytest.raises(ConfigError, match="type"):
            self.factory.create_checker('dep', {})

    def test_create_unsupported_type(self):
        with pytest.raises(ConfigError, match="不支持的依赖类型"):
            self.factory.create_checker('dep', {'type': 'kafka'})

    def test_create_invalid_config(self):
        with pytest.raises(ConfigError, match="配置验证失败"):
            self.factory.create_checker('dep', {'type': 'dummy', 'valid': False})

    def test_is_type_supported(self):
        assert self.factory.is_type_supported('dummy') is True
        assert self.factory.is_type_supported('mysql') is False


class TestTcpHealthChecker:
    """TCP依赖检查器测试"""

    def test_validate_config(self):
        assert TcpHealthChecker('db', {'host': 'localhost', 'port': 5432}).validate_config()
        assert not TcpHealthChecker('db', {'port': 5432}).validate_config()
        assert not TcpHealthChecker('db', {'host': 'localhost', 'port': 70000}).validate_config()
        assert not TcpHealthChecker('db', {'host': 'localhost', 'port': '5432'}).validate_config()

    @pytest.mark.asyncio
    async def test_port_open(self):
        """测试端口可连接"""
        server = await asyncio.start_server(lambda r, w: w.close(), '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        try:
            checker = TcpHealthChecker('db', {'type': 'tcp', 'host': '127.0.0.1', 'port': port})
            result = await checker.check_health()
        finally:
            server.close()
            await server.wait_closed()

        assert result.healthy is True
        assert result.metadata == {'host': '127.0.0.1', 'port': port}

    @pytest.mark.asyncio
    async def test_port_closed(self):
        """测试端口不可连接"""
        server = await asyncio.start_server(lambda r, w: w.close(), '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        checker = TcpHealthChecker('db', {'type': 'tcp', 'host': '127.0.0.1', 'port': port,
                                          'timeout': 1})
        result = await checker.check_health()

        assert result.healthy is False
        assert '失败' in result.error or '超时' in result.error


class TestRedisHealthChecker:
    """Redis依赖检查器测试"""

    def setup_method(self):
        self.config = {'type': 'redis', 'host': 'localhost', 'port': 6379, 'timeout': 2}

    def test_validate_config(self):
        assert RedisHealthChecker('cache', self.config).validate_config() is True
        assert RedisHealthChecker('cache', {'port': 6379}).validate_config() is False
        assert RedisHealthChecker('cache', {'host': 'h', 'port': -1}).validate_config() is False
        assert RedisHealthChecker('cache', {'host': 'h', 'database': -1}).validate_config() is False

    @pytest.mark.asyncio
    @patch('health_orchestrator.checkers.redis_checker.redis.Redis')
    async def test_ping_success(self, mock_redis):
        client = Mock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        mock_redis.return_value = client

        result = await RedisHealthChecker('cache', self.config).check_health()

        assert result.healthy is True
        assert 'ping_time' in result.metadata
        client.aclose.assert_called_once()
        assert mock_redis.call_args.kwargs['socket_timeout'] == 2.0

    @pytest.mark.asyncio
    @patch('health_orchestrator.checkers.redis_checker.redis.Redis')
    async def test_connection_error(self, mock_redis):
        client = Mock()
        client.ping = AsyncMock(side_effect=RedisConnectionError('refused'))
        client.aclose = AsyncMock()
        mock_redis.return_value = client

        result = await RedisHealthChecker('cache', self.config).check_health()

        assert result.healthy is False
        assert 'Redis连接错误' in result.error
        client.aclose.assert_called_once()

    @pytest.mark.asyncio
    @patch('health_orchestrator.checkers.redis_checker.redis.Redis')
    async def test_authentication_error(self, mock_redis):
        client = Mock()
        client.ping = AsyncMock(side_effect=AuthenticationError('bad password'))
        client.aclose = AsyncMock()
        mock_redis.return_value = client

        result = await RedisHealthChecker('cache', self.config).check_health()

        assert result.healthy is False
        assert 'Redis认证失败' in result.error
