"""健康监控调度模块

周期性地并发探测所有已注册服务，并将结果交给各自的状态跟踪器
"""

import asyncio
import time
from typing import Dict, Any, Optional, Set

from .state_tracker import ServiceHealthTracker
from ..checkers.http_probe import HttpHealthProbe
from ..models.health_check import ServiceSpec, ProbeResult, ServiceStatusSnapshot
from ..utils.error_handler import RetryConfig, poll_until
from ..utils.exceptions import ConfigError
from ..utils.log_manager import get_logger

# 外层超时在探测器自身超时之上留出的余量（秒）
PROBE_TIMEOUT_GRACE = 1.0


class HealthMonitor:
    """健康监控器

    持有所有服务的跟踪器，按固定间隔执行探测周期。不同服务并发探测
    （受 max_concurrent_checks 限制），同一服务的结果串行处理。
    """

    def __init__(self, probe: Optional[HttpHealthProbe] = None, executor=None,
                 dispatcher=None, check_interval: float = 60.0,
                 max_concurrent_checks: int = 10):
        """
        Args:
            probe: 健康探测器
            executor: 恢复动作执行器
            dispatcher: 通知分发器
            check_interval: 探测周期间隔（秒）
            max_concurrent_checks: 单个周期内的最大并发探测数
        """
        if check_interval <= 0:
            raise ConfigError("检查间隔必须为正数")
        if max_concurrent_checks < 1:
            raise ConfigError("最大并发检查数必须大于等于1")

        self.probe = probe or HttpHealthProbe()
        self.executor = executor
        self.dispatcher = dispatcher
        self.check_interval = check_interval
        self.max_concurrent_checks = max_concurrent_checks

        self.trackers: Dict[str, ServiceHealthTracker] = {}
        self.running_tasks: Set[asyncio.Task] = set()
        self.is_running = False
        self._cycle_task: Optional[asyncio.Task] = None
        self._semaphore = asyncio.Semaphore(max_concurrent_checks)
        self.stats = {'cycles': 0, 'probes_issued': 0, 'probe_errors': 0}
        self.logger = get_logger('monitor')

    def register_service(self, spec: ServiceSpec) -> ServiceHealthTracker:
        """
        注册服务并创建其状态跟踪器

        Raises:
            ConfigError: 服务名重复或探测参数无效
        """
        if spec.name in self.trackers:
            raise ConfigError(f"服务 {spec.name} 已注册")
        if not spec.health_check_url.startswith(('http://', 'https://')):
            raise ConfigError(f"服务 {spec.name} 的健康检查地址无效: {spec.health_check_url!r}")
        if spec.timeout <= 0:
            raise ConfigError(f"服务 {spec.name} 的超时时间必须为正数")
        if spec.alert_threshold < 1:
            raise ConfigError(f"服务 {spec.name} 的告警阈值必须大于等于1")

        tracker = ServiceHealthTracker(spec, self.executor, self.dispatcher)
        self.trackers[spec.name] = tracker
        self.logger.info(
            f"注册服务 {spec.name}: 地址={spec.health_check_url}, "
            f"告警阈值={spec.alert_threshold}, 自动恢复={spec.auto_recover}")
        return tracker

    async def start(self):
        """启动周期性探测，立即返回"""
        if self.is_running:
            self.logger.warning("健康监控器已经在运行")
            return

        self.is_running = True
        self._cycle_task = asyncio.create_task(self._schedule_loop())
        self.logger.info(
            f"启动健康监控器，服务数: {len(self.trackers)}, 间隔: {self.check_interval}s, "
            f"最大并发: {self.max_concurrent_checks}")

    async def stop(self):
        """停止探测，等待所有进行中的任务结束后返回（可重复调用）"""
        if not self.is_running and self._cycle_task is None and not self.running_tasks:
            return

        self.is_running = False
        self.logger.info("正在停止健康监控器...")

        pending = [t for t in self.running_tasks if not t.done()]
        if self._cycle_task is not None:
            pending.append(self._cycle_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.running_tasks.clear()
        self._cycle_task = None
        self.logger.info("健康监控器已停止")

    async def _schedule_loop(self):
        while self.is_running:
            started = time.monotonic()
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"探测周期异常: {e}")

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.check_interval - elapsed))

    async def run_cycle(self) -> Dict[str, Optional[ProbeResult]]:
        """
        执行一轮探测：并发探测所有服务，并将结果交给对应的跟踪器

        Returns:
            服务名 -> 探测结果；探测配置错误的服务为 None
        """
        self.stats['cycles'] += 1
        names = list(self.trackers)
        tasks = []
        for name in names:
            task = asyncio.create_task(self._check_service(self.trackers[name]))
            self.running_tasks.add(task)
            task.add_done_callback(self.running_tasks.discard)
            tasks.append(task)

        results = await asyncio.gather(*tasks, return_exceptions=True)

        cycle_results: Dict[str, Optional[ProbeResult]] = {}
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self.stats['probe_errors'] += 1
                self.logger.error(f"检查服务 {name} 时发生异常: {result}")
                cycle_results[name] = None
            else:
                cycle_results[name] = result
        return cycle_results

    async def check_all_now(self) -> Dict[str, ServiceStatusSnapshot]:
        """立即执行一轮探测并返回最新状态"""
        self.logger.info("立即检查所有服务")
        await self.run_cycle()
        return self.get_status()

    async def _check_service(self, tracker: ServiceHealthTracker) -> ProbeResult:
        result = await self._probe(tracker.spec)
        await tracker.handle_result(result)
        return result

    async def _probe(self, spec: ServiceSpec) -> ProbeResult:
        async with self._semaphore:
            self.stats['probes_issued'] += 1
            config = RetryConfig(max_attempts=1, base_delay=0,
                                 attempt_timeout=spec.timeout + PROBE_TIMEOUT_GRACE)
            # ProbeError 等配置类异常直接向上传播
            _, result, _ = await poll_until(
                lambda: self.probe.probe(spec), lambda r: True, config)

            if result is None:
                result = ProbeResult(
                    service_name=spec.name,
                    healthy=False,
                    latency=spec.timeout + PROBE_TIMEOUT_GRACE,
                    error=f"探测超时或异常 (超时 {spec.timeout}s)"
                )
            return result

    def get_status(self) -> Dict[str, ServiceStatusSnapshot]:
        """获取所有服务的状态快照"""
        return {name: tracker.snapshot() for name, tracker in self.trackers.items()}

    def get_service_status(self, service_name: str) -> Optional[ServiceStatusSnapshot]:
        tracker = self.trackers.get(service_name)
        return tracker.snapshot() if tracker else None

    def get_stats(self) -> Dict[str, Any]:
        """获取监控器统计信息"""
        return {
            'is_running': self.is_running,
            'total_services': len(self.trackers),
            'check_interval': self.check_interval,
            'max_concurrent_checks': self.max_concurrent_checks,
            'running_tasks_count': len(self.running_tasks),
            **self.stats,
            'services': {name: tracker.get_stats() for name, tracker in self.trackers.items()},
        }
