"""通知渠道基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Type, Callable

from ..models.health_check import NotificationEvent, render_template
from ..utils.exceptions import NotificationConfigError, NotificationSendError


class BaseNotifier(ABC):
    """通知渠道抽象基类"""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化通知渠道

        Args:
            name: 渠道名称
            config: 渠道配置参数
        """
        self.name = name
        self.config = config
        self.notifier_type = self.__class__.__name__.replace('Notifier', '').lower()

    @abstractmethod
    async def send(self, event: NotificationEvent) -> bool:
        """
        发送通知

        Args:
            event: 通知事件

        Returns:
            bool: 发送是否成功
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
        """单次发送请求的超时时间（秒）"""
        return float(self.config.get('timeout', 5))

    def render(self, template_str: str, event: NotificationEvent) -> str:
        """渲染 {{variable}} 模板"""
        try:
            return render_template(template_str, event.template_vars())
        except (TypeError, AttributeError) as e:
            raise NotificationSendError(f"模板渲染失败: {e}", notifier_name=self.name)


_NOTIFIER_TYPES: Dict[str, Type[BaseNotifier]] = {}


def register_notifier(notifier_type: str) -> Callable[[Type[BaseNotifier]], Type[BaseNotifier]]:
    """装饰器：注册通知渠道类"""
    def decorator(notifier_class: Type[BaseNotifier]) -> Type[BaseNotifier]:
        _NOTIFIER_TYPES[notifier_type] = notifier_class
        return notifier_class

    return decorator


def create_notifier(config: Dict[str, Any]) -> BaseNotifier:
    """
    根据配置创建通知渠道

    Raises:
        NotificationConfigError: 类型不支持或配置无效
    """
    notifier_type = str(config.get('type', '')).lower()
    name = config.get('name') or f'{notifier_type}_notifier'

    if notifier_type not in _NOTIFIER_TYPES:
        raise NotificationConfigError(
            f"不支持的通知渠道类型: '{notifier_type}'，支持的类型: {sorted(_NOTIFIER_TYPES)}",
            notifier_name=name)

    return _NOTIFIER_TYPES[notifier_type](name, config)


def supported_notifier_types() -> list:
    return sorted(_NOTIFIER_TYPES)
