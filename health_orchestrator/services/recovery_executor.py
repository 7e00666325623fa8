"""恢复动作执行器

恢复动作是封闭的变体集合（重启、清缓存、扩缩容、Webhook），
由 execute 穷举分派；未知类型在配置加载阶段即被拒绝。
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import aiohttp

from .command_runner import CommandRunner
from ..models.health_check import (
    RecoveryAction, RestartService, ClearCache, ScaleService, Webhook,
    NotificationEvent, EventType, Severity
)
from ..utils.exceptions import CommandError, RecoveryActionError
from ..utils.log_manager import get_logger


@dataclass
class ActionOutcome:
    """单个恢复动作的执行结果"""
    action: RecoveryAction
    success: bool
    duration: float
    error: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.action.kind


class RecoveryActionExecutor:
    """按声明顺序执行服务的恢复动作"""

    def __init__(self, command_runner: Optional[CommandRunner] = None, dispatcher=None):
        """
        Args:
            command_runner: 外部命令执行器
            dispatcher: 通知分发器，用于报告每个动作的结果（可选）
        """
        self.command_runner = command_runner or CommandRunner()
        self.dispatcher = dispatcher
        self.logger = get_logger('recovery.executor')

    async def execute(self, service_name: str, action: RecoveryAction) -> None:
        """
        执行单个恢复动作

        Raises:
            RecoveryActionError: 动作执行失败
            TypeError: 动作不是已知的变体
        """
        if isinstance(action, RestartService):
            command = action.command or ('systemctl', 'restart', action.service or service_name)
            await self._run_command(service_name, action, command)
        elif isinstance(action, ClearCache):
            command = action.command or self._default_cache_command(service_name, action)
            await self._run_command(service_name, action, command)
        elif isinstance(action, ScaleService):
            target = action.service or service_name
            command = action.command or (
                'docker', 'compose', 'up', '-d', '--scale', f'{target}={action.replicas}')
            await self._run_command(service_name, action, command)
        elif isinstance(action, Webhook):
            await self._post_webhook(service_name, action)
        else:
            raise TypeError(f"未知的恢复动作类型: {type(action).__name__}")

    async def execute_all(self, service_name: str,
                          actions: Sequence[RecoveryAction]) -> List[ActionOutcome]:
        """
        依次执行全部恢复动作，单个动作失败不影响后续动作

        Returns:
            List[ActionOutcome]: 每个动作的执行结果，顺序与声明一致
        """
        outcomes = []
        for action in actions:
            start_time = time.monotonic()
            try:
                await self.execute(service_name, action)
                outcome = ActionOutcome(action, True, time.monotonic() - start_time)
                self.logger.info(f"服务 {service_name} 恢复动作 {action.kind} 执行成功 "
                                 f"({outcome.duration:.2f}s)")
            except RecoveryActionError as e:
                outcome = ActionOutcome(action, False, time.monotonic() - start_time, e.message)
                self.logger.error(f"服务 {service_name} 恢复动作 {action.kind} 执行失败: "
                                  f"{e.message}")
            except Exception as e:
                outcome = ActionOutcome(action, False, time.monotonic() - start_time,
                                        f"{type(e).__name__}: {e}")
                self.logger.error(f"服务 {service_name} 恢复动作 {action.kind} 执行异常: {e}",
                                  exc_info=True)

            outcomes.append(outcome)
            await self._report(service_name, outcome)

        return outcomes

    def _default_cache_command(self, service_name: str, action: ClearCache) -> Tuple[str, ...]:
        if action.cache_type == 'redis':
            return ('redis-cli', 'FLUSHALL')
        raise RecoveryActionError(
            f"缓存类型 {action.cache_type} 没有默认清理命令，请配置 command",
            action_kind=action.kind, service_name=service_name)

    async def _run_command(self, service_name: str, action: RecoveryAction,
                           command: Sequence[str]) -> None:
        try:
            await self.command_runner.run_checked(command, timeout=action.timeout)
        except CommandError as e:
            raise RecoveryActionError(
                f"{action.kind} 命令执行失败: {e.message}",
                action_kind=action.kind, service_name=service_name, cause=e)

    async def _post_webhook(self, service_name: str, action: Webhook) -> None:
        payload = {
            'service': service_name,
            'action': 'recover',
            'timestamp': datetime.now().isoformat(),
        }
        payload.update(dict(action.payload))

        try:
            timeout = aiohttp.ClientTimeout(total=action.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(action.url, json=payload,
                                        headers=dict(action.headers)) as response:
                    if not 200 <= response.status < 300:
                        text = await response.text(errors='replace')
                        raise RecoveryActionError(
                            f"Webhook 返回错误状态码 {response.status}: {text[:200]}",
                            action_kind=action.kind, service_name=service_name)
        except asyncio.TimeoutError as e:
            raise RecoveryActionError(
                f"Webhook 请求超时 ({action.timeout}s): {action.url}",
                action_kind=action.kind, service_name=service_name, cause=e)
        except aiohttp.ClientError as e:
            raise RecoveryActionError(
                f"Webhook 请求失败: {e}",
                action_kind=action.kind, service_name=service_name, cause=e)

    async def _report(self, service_name: str, outcome: ActionOutcome) -> None:
        if self.dispatcher is None:
            return
        event = NotificationEvent(
            event_type=EventType.RECOVERY_ACTION,
            service_name=service_name,
            status='SUCCESS' if outcome.success else 'FAILED',
            severity=Severity.INFO if outcome.success else Severity.WARNING,
            title=f"{service_name} 恢复动作 {outcome.kind}",
            error_message=outcome.error,
            metadata={'action': outcome.kind, 'duration': round(outcome.duration, 3)}
        )
        await self.dispatcher.notify(event)
