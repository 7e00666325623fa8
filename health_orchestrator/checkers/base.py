"""依赖检查器基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any
from ..models.health_check import ProbeResult
from ..utils.log_manager import get_logger


class BaseHealthChecker(ABC):
    """依赖检查器抽象基类

    部署前置检查通过检查器确认声明的上游依赖（HTTP、TCP端口、Redis等）可用。
    """

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化检查器

        Args:
            name: 依赖名称
            config: 依赖配置参数
        """
        self.name = name
        self.config = config
        self.checker_type = config.get('type', 'unknown')
        self.logger = get_logger(f'checker.{self.checker_type}.{self.name}')

    @abstractmethod
    async def check_health(self) -> ProbeResult:
        """
        执行检查并返回结果，预期内的失败以结果返回而非抛出异常

        Returns:
            ProbeResult: 检查结果
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        pass

    def get_timeout(self) -> float:
        """
        获取超时时间配置

        Returns:
            float: 超时时间（秒）
        """
        return float(self.config.get('timeout', 5))
