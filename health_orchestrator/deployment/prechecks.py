"""部署前置检查

在修改任何内容之前确认：系统资源在上限之内、声明的上游依赖可用、
当前（部署前）服务本身健康。任一项失败即终止部署。
"""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List

import psutil

from ..checkers.factory import HealthCheckerFactory, health_checker_factory
from ..checkers.http_probe import probe_url
from ..models.deployment import DeploymentSpec
from ..utils.exceptions import ConfigError, PrecheckError
from ..utils.log_manager import get_logger


@dataclass
class PrecheckReport:
    """前置检查结果"""
    service_name: str
    failures: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return not self.failures


def _existing_ancestor(path: str) -> str:
    current = Path(path).absolute()
    while not current.exists() and current != current.parent:
        current = current.parent
    return str(current)


class Prechecker:
    """部署前置检查器"""

    def __init__(self, checker_factory: HealthCheckerFactory = health_checker_factory):
        self.checker_factory = checker_factory
        self.logger = get_logger('deployment.precheck')

    async def run(self, spec: DeploymentSpec) -> PrecheckReport:
        """
        执行全部前置检查

        Returns:
            PrecheckReport: 全部通过时的检查报告

        Raises:
            PrecheckError: 任一检查失败，异常中列出所有失败项
        """
        report = PrecheckReport(service_name=spec.service_name)

        self.check_resources(spec, report)
        await self.check_dependencies(spec, report)
        await self.check_current_service(spec, report)

        if not report.passed:
            self.logger.error(
                f"服务 {spec.service_name} 前置检查失败: {'; '.join(report.failures)}")
            raise PrecheckError(
                f"前置检查失败: {'; '.join(report.failures)}",
                failures=report.failures,
                service_name=spec.service_name,
                details={'checks': report.details})

        self.logger.info(f"服务 {spec.service_name} 前置检查通过")
        return report

    def check_resources(self, spec: DeploymentSpec, report: PrecheckReport):
        """磁盘与内存使用率不得超过配置的上限"""
        disk_path = _existing_ancestor(spec.app_dir)
        disk_percent = psutil.disk_usage(disk_path).percent
        memory_percent = psutil.virtual_memory().percent
        report.details['disk_percent'] = disk_percent
        report.details['memory_percent'] = memory_percent

        if disk_percent > spec.max_disk_percent:
            report.failures.append(
                f"磁盘使用率 {disk_percent:.1f}% 超过上限 {spec.max_disk_percent:.1f}% ({disk_path})")
        if memory_percent > spec.max_memory_percent:
            report.failures.append(
                f"内存使用率 {memory_percent:.1f}% 超过上限 {spec.max_memory_percent:.1f}%")

    async def check_dependencies(self, spec: DeploymentSpec, report: PrecheckReport):
        """并发检查声明的上游依赖"""
        if not spec.dependencies:
            return

        checkers = []
        for index, dependency in enumerate(spec.dependencies):
            name = dependency.get('name') or f"{dependency.get('type', 'unknown')}-{index}"
            try:
                checkers.append(self.checker_factory.create_checker(name, dependency))
            except ConfigError as e:
                report.failures.append(f"依赖 {name} 配置无效: {e.message}")

        async def run_checker(checker):
            try:
                return await asyncio.wait_for(checker.check_health(),
                                              timeout=checker.get_timeout() + 1)
            except asyncio.TimeoutError:
                return None

        results = await asyncio.gather(*(run_checker(c) for c in checkers))
        dependency_details = {}
        for checker, result in zip(checkers, results):
            if result is None:
                report.failures.append(f"依赖 {checker.name} 检查超时")
                dependency_details[checker.name] = False
            elif not result.healthy:
                report.failures.append(f"依赖 {checker.name} 不可用: {result.error}")
                dependency_details[checker.name] = False
            else:
                dependency_details[checker.name] = True
        report.details['dependencies'] = dependency_details

    async def check_current_service(self, spec: DeploymentSpec, report: PrecheckReport):
        """部署前的服务本身必须健康"""
        result = await probe_url(
            spec.service_name,
            spec.health_check_url,
            spec.health_check_timeout,
            expected_content=spec.expected_content
        )
        report.details['current_service_healthy'] = result.healthy
        if not result.healthy:
            report.failures.append(f"当前服务不健康: {result.error}")
