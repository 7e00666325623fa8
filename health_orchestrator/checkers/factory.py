"""依赖检查器工厂"""

from typing import Dict, Type, Any
from .base import BaseHealthChecker
from ..utils.exceptions import ConfigError


class HealthCheckerFactory:
    """依赖检查器工厂类，按类型名创建检查器"""

    def __init__(self):
        self._checkers: Dict[str, Type[BaseHealthChecker]] = {}

    def register_checker(self, checker_type: str, checker_class: Type[BaseHealthChecker]):
        """
        注册检查器类

        Args:
            checker_type: 依赖类型名称
            checker_class: 检查器类

        Raises:
            ConfigError: 注册失败
        """
        if not issubclass(checker_class, BaseHealthChecker):
            raise ConfigError(f"检查器类 {checker_class.__name__} 必须继承自 BaseHealthChecker")

        if checker_type in self._checkers:
            raise ConfigError(f"依赖类型 '{checker_type}' 已经注册了检查器")

        self._checkers[checker_type] = checker_class

    def create_checker(self, name: str, config: Dict[str, Any]) -> BaseHealthChecker:
        """
        创建检查器实例

        Args:
            name: 依赖名称
            config: 依赖配置，必须包含 type

        Returns:
            BaseHealthChecker: 检查器实例

        Raises:
            ConfigError: 类型不支持或配置无效
        """
        checker_type = config.get('type')
        if not checker_type:
            raise ConfigError(f"依赖 '{name}' 缺少 'type' 配置")

        if checker_type not in self._checkers:
            raise ConfigError(
                f"不支持的依赖类型: '{checker_type}'，支持的类型: {self.get_supported_types()}")

        checker = self._checkers[checker_type](name, config)
        if not checker.validate_config():
            raise ConfigError(f"依赖 '{name}' 的配置验证失败")

        return checker

    def get_supported_types(self) -> list:
        """获取支持的依赖类型列表"""
        return sorted(self._checkers.keys())

    def is_type_supported(self, checker_type: str) -> bool:
        """检查是否支持指定的依赖类型"""
        return checker_type in self._checkers


# 全局工厂实例
health_checker_factory = HealthCheckerFactory()


def register_checker(checker_type: str):
    """
    装饰器：注册检查器类

    Args:
        checker_type: 依赖类型名称
    """
    def decorator(checker_class: Type[BaseHealthChecker]):
        health_checker_factory.register_checker(checker_type, checker_class)
        return checker_class

    return decorator
