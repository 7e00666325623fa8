"""健康探测与依赖检查模块"""

from .base import BaseHealthChecker
from .factory import HealthCheckerFactory, health_checker_factory, register_checker
from .http_probe import HttpHealthProbe, HttpDependencyChecker, probe_url
from .redis_checker import RedisHealthChecker
from .tcp_checker import TcpHealthChecker

__all__ = ['BaseHealthChecker', 'HealthCheckerFactory', 'health_checker_factory',
           'register_checker', 'HttpHealthProbe', 'HttpDependencyChecker', 'probe_url',
           'RedisHealthChecker', 'TcpHealthChecker']
