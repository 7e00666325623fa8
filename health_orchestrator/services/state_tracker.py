"""服务健康状态跟踪器

每个服务一个跟踪器，独占该服务的 ServiceHealthState：
统计连续失败次数，检测 UP/DOWN 状态变化，并决定何时告警与执行恢复动作。
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, List, Optional

from ..models.health_check import (
    ServiceSpec, ProbeResult, ServiceStatus, ServiceHealthState, ServiceStatusSnapshot,
    NotificationEvent, EventType, Severity
)
from ..utils.log_manager import get_logger

# 超过阈值后每隔多少次失败重新告警
REALERT_INTERVAL = 10


def should_alert(consecutive_failures: int, alert_threshold: int) -> bool:
    """恰好达到阈值时告警，此后仅在失败次数为10的倍数时再次告警"""
    if consecutive_failures == alert_threshold:
        return True
    return (consecutive_failures > alert_threshold
            and consecutive_failures % REALERT_INTERVAL == 0)


@dataclass(frozen=True)
class TrackerTransition:
    """一次探测结果引起的状态变化及需要执行的副作用"""
    previous_status: ServiceStatus
    status: ServiceStatus
    consecutive_failures: int
    alert: bool = False
    forced_alert: bool = False
    recovered: bool = False
    run_recovery: bool = False


class ServiceHealthTracker:
    """单个服务的健康状态机：Unknown -> Up <-> Down"""

    def __init__(self, spec: ServiceSpec, executor=None, dispatcher=None,
                 history_size: int = 100):
        """
        Args:
            spec: 服务描述
            executor: 恢复动作执行器
            dispatcher: 通知分发器
            history_size: 保留的探测历史条数
        """
        self.spec = spec
        self.executor = executor
        self.dispatcher = dispatcher
        self.state = ServiceHealthState()
        self.history: deque = deque(maxlen=history_size)
        self.logger = get_logger(f'tracker.{spec.name}')
        self._lock = asyncio.Lock()

    def apply(self, result: ProbeResult) -> TrackerTransition:
        """
        将一次探测结果应用到状态上（不执行任何I/O）

        Args:
            result: 探测结果

        Returns:
            TrackerTransition: 状态变化及需要触发的告警、恢复通知与恢复动作
        """
        state = self.state
        previous_status = state.status
        state.last_checked_at = result.timestamp
        state.last_result = result
        self.history.append(result)

        if result.healthy:
            recovered = previous_status == ServiceStatus.DOWN
            state.status = ServiceStatus.UP
            state.consecutive_failures = 0
            state.recovery_attempts = 0
            state.alerted = False
            return TrackerTransition(previous_status, state.status, 0, recovered=recovered)

        state.consecutive_failures += 1
        state.status = ServiceStatus.DOWN

        alert = should_alert(state.consecutive_failures, self.spec.alert_threshold)
        run_recovery = self.spec.auto_recover and bool(self.spec.recovery_actions)
        forced_alert = False

        if run_recovery:
            state.recovery_attempts += 1
            limit = self.spec.max_recovery_attempts_before_alert
            if (limit is not None and not alert and not state.alerted
                    and state.recovery_attempts >= limit):
                forced_alert = True

        if alert or forced_alert:
            state.alerted = True

        return TrackerTransition(
            previous_status, state.status, state.consecutive_failures,
            alert=alert, forced_alert=forced_alert, run_recovery=run_recovery
        )

    async def handle_result(self, result: ProbeResult) -> TrackerTransition:
        """
        处理一次探测结果：更新状态并执行相应的通知与恢复动作

        同一服务的结果按到达顺序串行处理。
        """
        async with self._lock:
            # 恢复通知先于状态提交，通知期间快照仍为 DOWN
            if result.healthy and self.state.status == ServiceStatus.DOWN:
                await self._notify(self._build_recovery_event(result))

            transition = self.apply(result)

            if transition.previous_status != transition.status:
                self.logger.warning(
                    f"服务 {self.spec.name} 状态变化: "
                    f"{transition.previous_status.value} -> {transition.status.value}")

            if transition.alert or transition.forced_alert:
                await self._notify(self._build_alert_event(result, transition))

            if transition.run_recovery:
                await self._run_recovery(transition)

            return transition

    async def _run_recovery(self, transition: TrackerTransition):
        if self.executor is None:
            self.logger.warning(f"服务 {self.spec.name} 启用了自动恢复但未配置执行器")
            return

        self.logger.info(
            f"服务 {self.spec.name} 执行自动恢复 (连续失败 {transition.consecutive_failures} 次, "
            f"本次故障第 {self.state.recovery_attempts} 次恢复)")
        outcomes = await self.executor.execute_all(self.spec.name, self.spec.recovery_actions)
        failed = [o.kind for o in outcomes if not o.success]
        if failed:
            self.logger.warning(f"服务 {self.spec.name} 以下恢复动作失败: {', '.join(failed)}")

    async def _notify(self, event: NotificationEvent):
        if self.dispatcher is not None:
            await self.dispatcher.notify(event)

    def _build_alert_event(self, result: ProbeResult,
                           transition: TrackerTransition) -> NotificationEvent:
        metadata: Dict[str, Any] = {'alert_threshold': self.spec.alert_threshold}
        if transition.forced_alert:
            metadata['forced'] = True
            metadata['recovery_attempts'] = self.state.recovery_attempts
        if result.status_code is not None:
            metadata['status_code'] = result.status_code

        return NotificationEvent(
            event_type=EventType.ALERT,
            service_name=self.spec.name,
            status='DOWN',
            severity=Severity.CRITICAL,
            title=f"服务 {self.spec.name} 不可用",
            error_message=result.error,
            consecutive_failures=transition.consecutive_failures,
            response_time=result.latency,
            timestamp=result.timestamp,
            metadata=metadata
        )

    def _build_recovery_event(self, result: ProbeResult) -> NotificationEvent:
        return NotificationEvent(
            event_type=EventType.RECOVERY,
            service_name=self.spec.name,
            status='UP',
            severity=Severity.INFO,
            title=f"服务 {self.spec.name} 已恢复",
            consecutive_failures=0,
            response_time=result.latency,
            timestamp=result.timestamp
        )

    def snapshot(self) -> ServiceStatusSnapshot:
        """返回当前状态的只读快照"""
        last_result = self.state.last_result
        return ServiceStatusSnapshot(
            service_name=self.spec.name,
            status=self.state.status,
            last_checked_at=self.state.last_checked_at,
            consecutive_failures=self.state.consecutive_failures,
            last_error=last_result.error if last_result else None,
            last_latency=last_result.latency if last_result else None
        )

    def get_history(self, limit: Optional[int] = None) -> List[ProbeResult]:
        """获取最近的探测历史（按时间倒序）"""
        history = list(reversed(self.history))
        if limit:
            history = history[:limit]
        return history

    def get_stats(self, since: Optional[datetime] = None) -> Dict[str, Any]:
        """根据探测历史计算统计信息"""
        history = [h for h in self.history if since is None or h.timestamp >= since]
        if not history:
            return {
                'service_name': self.spec.name,
                'total_checks': 0,
                'failures': 0,
                'health_rate': 0.0,
                'avg_latency': None,
            }

        failures = sum(1 for h in history if not h.healthy)
        return {
            'service_name': self.spec.name,
            'total_checks': len(history),
            'failures': failures,
            'health_rate': (len(history) - failures) / len(history),
            'avg_latency': sum(h.latency for h in history) / len(history),
        }
