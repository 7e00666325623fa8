"""通知分发器"""

import asyncio
import logging
from collections import deque
from typing import Dict, List, Any, Optional

from .base import BaseNotifier, create_notifier
from ..models.health_check import NotificationEvent
from ..utils.exceptions import NotificationConfigError


class NotificationDispatcher:
    """通知分发器

    将事件并发推送到所有通知渠道。每个渠道有独立的超时，
    任一渠道失败只记录日志，不影响其他渠道，也不会抛给调用方。
    """

    def __init__(self, notifiers: Optional[List[BaseNotifier]] = None,
                 sink_timeout: float = 5.0, history_size: int = 200):
        """
        Args:
            notifiers: 通知渠道列表
            sink_timeout: 单个渠道的最长等待时间（秒）
            history_size: 保留的最近事件数量
        """
        self.notifiers: List[BaseNotifier] = []
        self.sink_timeout = sink_timeout
        self.logger = logging.getLogger(__name__)
        self.history: deque = deque(maxlen=history_size)
        self.stats = {'events': 0, 'deliveries': 0, 'failures': 0, 'timeouts': 0}

        for notifier in notifiers or []:
            self.add_notifier(notifier)

    @classmethod
    def from_config(cls, notifier_configs: List[Dict[str, Any]],
                    sink_timeout: float = 5.0) -> 'NotificationDispatcher':
        """根据配置列表创建分发器，配置无效时抛出 NotificationConfigError"""
        return cls([create_notifier(config) for config in notifier_configs],
                   sink_timeout=sink_timeout)

    def add_notifier(self, notifier: BaseNotifier):
        if not isinstance(notifier, BaseNotifier):
            raise NotificationConfigError(f"通知渠道必须继承自BaseNotifier: {type(notifier)}")
        self.notifiers.append(notifier)
        self.logger.info(f"已添加通知渠道: {notifier.name} ({notifier.notifier_type})")

    def remove_notifier(self, name: str) -> bool:
        for i, notifier in enumerate(self.notifiers):
            if notifier.name == name:
                self.notifiers.pop(i)
                self.logger.info(f"已移除通知渠道: {name}")
                return True
        return False

    async def notify(self, event: NotificationEvent) -> List[Dict[str, Any]]:
        """
        推送事件到所有渠道并等待（有界）完成

        Args:
            event: 通知事件

        Returns:
            每个渠道的发送结果，形如 {'notifier', 'success', 'error'}
        """
        self.stats['events'] += 1
        self.history.append(event)

        if not self.notifiers:
            self.logger.debug(f"没有配置通知渠道，跳过事件: {event.event_type.value} "
                              f"{event.service_name}")
            return []

        results = await asyncio.gather(
            *(self._send_to_notifier(notifier, event) for notifier in self.notifiers)
        )
        self._log_send_results(results, event)
        return list(results)

    async def _send_to_notifier(self, notifier: BaseNotifier,
                                event: NotificationEvent) -> Dict[str, Any]:
        try:
            success = await asyncio.wait_for(notifier.send(event), timeout=self.sink_timeout)
            return {'notifier': notifier.name, 'success': bool(success), 'error': None}
        except asyncio.TimeoutError:
            self.stats['timeouts'] += 1
            self.logger.error(f"通知渠道 {notifier.name} 发送超时 ({self.sink_timeout}s)")
            return {'notifier': notifier.name, 'success': False, 'error': 'timeout'}
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"通知渠道 {notifier.name} 发送失败: {e}")
            return {'notifier': notifier.name, 'success': False, 'error': str(e)}

    def _log_send_results(self, results: List[Dict[str, Any]], event: NotificationEvent):
        succeeded = [r['notifier'] for r in results if r['success']]
        failed = [r['notifier'] for r in results if not r['success']]
        self.stats['deliveries'] += len(succeeded)
        self.stats['failures'] += len(failed)

        if succeeded:
            self.logger.info(
                f"通知发送成功 {len(succeeded)}/{len(results)} 个渠道 "
                f"(事件: {event.event_type.value}, 服务: {event.service_name}, "
                f"状态: {event.status})")
        if failed:
            self.logger.warning(
                f"以下通知渠道发送失败: {', '.join(failed)} (服务: {event.service_name})")

    def get_notifier_names(self) -> List[str]:
        return [notifier.name for notifier in self.notifiers]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'notifier_count': len(self.notifiers),
            'notifier_names': self.get_notifier_names(),
        }
