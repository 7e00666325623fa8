"""部署编排器

按固定顺序推进一次部署：
PRECHECKING -> BACKUP_CREATED -> DEPLOYING -> HEALTH_CHECKING
-> TRAFFIC_SWITCHING -> VERIFYING -> CLEANUP -> COMPLETED

回滚点创建之后的任何失败都会触发回滚，回滚成功进入 ROLLED_BACK，
回滚失败进入 FAILED 并升级告警，需要人工介入。
"""

import asyncio
import shutil
import tempfile
from collections import deque
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Tuple

from .artifacts import ArtifactFetcher, replace_directory
from .backup import BackupManager, read_version
from .prechecks import Prechecker
from ..checkers.http_probe import probe_url
from ..models.deployment import (
    DeploymentPhase, DeploymentContext, DeploymentSpec, DeploymentResult
)
from ..models.health_check import ProbeResult, NotificationEvent, EventType, Severity
from ..services.command_runner import CommandRunner
from ..utils.error_handler import RetryConfig, poll_until
from ..utils.exceptions import (
    OrchestratorError, CommandError, DeploymentCancelledError, DeploymentInProgressError,
    DeploymentPhaseError, RollbackError
)
from ..utils.log_manager import get_logger

# 外层超时在单次健康探测超时之上留出的余量（秒）
HEALTH_CHECK_TIMEOUT_GRACE = 1.0

SUMMARY_SEVERITY = {
    DeploymentPhase.COMPLETED: Severity.INFO,
    DeploymentPhase.ROLLED_BACK: Severity.WARNING,
    DeploymentPhase.FAILED: Severity.CRITICAL,
}


class DeploymentOrchestrator:
    """部署编排器，同一服务同一时间只允许一个部署运行"""

    def __init__(self, command_runner: Optional[CommandRunner] = None, dispatcher=None,
                 backup_manager: Optional[BackupManager] = None,
                 prechecker: Optional[Prechecker] = None,
                 artifact_fetcher: Optional[ArtifactFetcher] = None,
                 history_size: int = 50):
        """
        Args:
            command_runner: 外部命令执行器
            dispatcher: 通知分发器
            backup_manager: 回滚点管理器
            prechecker: 前置检查器
            artifact_fetcher: 制品获取器
            history_size: 保留的部署结果数量
        """
        self.command_runner = command_runner or CommandRunner()
        self.dispatcher = dispatcher
        self.backup_manager = backup_manager or BackupManager()
        self.prechecker = prechecker or Prechecker()
        self.artifact_fetcher = artifact_fetcher or ArtifactFetcher()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._active: Dict[str, DeploymentContext] = {}
        self._cancel_requests: Set[str] = set()
        self.history: deque = deque(maxlen=history_size)
        self.logger = get_logger('deployment')

    async def deploy(self, spec: DeploymentSpec, target_version: str) -> DeploymentResult:
        """
        执行一次部署，直到进入终态

        Args:
            spec: 部署参数
            target_version: 目标版本

        Returns:
            DeploymentResult: 部署结果（失败同样以结果返回）

        Raises:
            DeploymentInProgressError: 该服务已有部署正在进行
        """
        lock = self._locks.setdefault(spec.service_name, asyncio.Lock())
        if lock.locked():
            self.logger.warning(f"服务 {spec.service_name} 已有部署正在进行，拒绝新的部署")
            raise DeploymentInProgressError(spec.service_name)

        async with lock:
            context = DeploymentContext(spec.service_name, target_version)
            self._active[spec.service_name] = context
            self._cancel_requests.discard(spec.service_name)
            try:
                result = await self._run(spec, context)
            finally:
                self._active.pop(spec.service_name, None)
                self._cancel_requests.discard(spec.service_name)

        self.history.append(result)
        return result

    def request_cancel(self, service_name: str) -> bool:
        """
        请求取消服务的进行中部署，在下一个阶段边界生效

        Returns:
            bool: 该服务是否有进行中的部署
        """
        context = self._active.get(service_name)
        if context is None:
            return False
        self._cancel_requests.add(service_name)
        self.logger.warning(
            f"已请求取消部署 {context.deployment_id}，将在阶段 {context.phase.value} 结束后生效")
        return True

    def is_deploying(self, service_name: str) -> bool:
        return service_name in self._active

    def get_active_deployments(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                'deployment_id': context.deployment_id,
                'target_version': context.target_version,
                'phase': context.phase.value,
                'started_at': context.started_at.isoformat(),
                'cancel_requested': name in self._cancel_requests,
            }
            for name, context in self._active.items()
        }

    def get_history(self, service_name: Optional[str] = None,
                    limit: Optional[int] = None) -> List[DeploymentResult]:
        """获取部署历史（按时间倒序）"""
        history = [r for r in reversed(self.history)
                   if service_name is None or r.service_name == service_name]
        if limit:
            history = history[:limit]
        return history

    async def _run(self, spec: DeploymentSpec, context: DeploymentContext) -> DeploymentResult:
        self.logger.info(f"开始部署 {context.deployment_id}: "
                         f"{spec.service_name} -> {context.target_version}")
        await self._notify_phase(context)

        # 回滚点创建之前的失败不需要回滚
        try:
            await self.prechecker.run(spec)
            self._check_cancel(context)
            context.rollback_point = await asyncio.to_thread(
                self.backup_manager.create_rollback_point, spec, context.deployment_id)
        except asyncio.CancelledError:
            context.error = f"部署任务在阶段 {context.phase.value} 被中断"
            self.logger.warning(f"部署 {context.deployment_id} {context.error}")
            await self._settle(self._finish(context, DeploymentPhase.FAILED))
            raise
        except Exception as e:
            self._log_failure(context, e)
            context.error = self._describe(e)
            return await self._finish(context, DeploymentPhase.FAILED)

        steps = (
            (DeploymentPhase.DEPLOYING, self._deploy_artifact),
            (DeploymentPhase.HEALTH_CHECKING, self._check_new_instance),
            (DeploymentPhase.TRAFFIC_SWITCHING, self._switch_traffic),
            (DeploymentPhase.VERIFYING, self._verify),
        )
        try:
            await self._enter(context, DeploymentPhase.BACKUP_CREATED)
            for phase, step in steps:
                self._check_cancel(context)
                await self._enter(context, phase)
                await step(spec, context)
            self._check_cancel(context)
        except asyncio.CancelledError:
            # 任务被外部取消时同样回滚，回滚本身不再响应取消
            context.error = f"部署任务在阶段 {context.phase.value} 被中断"
            self.logger.warning(f"部署 {context.deployment_id} {context.error}，开始回滚")
            await self._settle(self._rollback(spec, context))
            raise
        except Exception as e:
            self._log_failure(context, e)
            context.error = self._describe(e)
            return await asyncio.shield(self._rollback(spec, context))

        return await asyncio.shield(self._complete(spec, context))

    async def _complete(self, spec: DeploymentSpec,
                        context: DeploymentContext) -> DeploymentResult:
        await self._enter(context, DeploymentPhase.CLEANUP)
        await self._cleanup(spec, context)
        self.logger.info(f"部署 {context.deployment_id} 完成，当前版本 {context.target_version}")
        return await self._finish(context, DeploymentPhase.COMPLETED)

    async def _settle(self, coro) -> None:
        """任务已被取消时把收尾流程执行完并记录结果"""
        result = await asyncio.shield(coro)
        self.history.append(result)

    def _check_cancel(self, context: DeploymentContext):
        if context.service_name in self._cancel_requests:
            raise DeploymentCancelledError(
                f"部署在阶段 {context.phase.value} 结束后被取消", phase=context.phase.value,
                service_name=context.service_name)

    async def _deploy_artifact(self, spec: DeploymentSpec, context: DeploymentContext):
        context.staging_dir = tempfile.mkdtemp(
            prefix=f"{spec.service_name}-{context.deployment_id}-", dir=spec.temp_dir)
        artifact_root = await self.artifact_fetcher.fetch(
            spec.artifact_source, context.target_version, context.staging_dir)

        await self._run_command(spec, spec.stop_command, DeploymentPhase.DEPLOYING)
        await asyncio.to_thread(replace_directory, artifact_root, Path(spec.app_dir))

        version_path = Path(spec.app_dir) / spec.version_file
        if read_version(spec.app_dir, spec.version_file) != context.target_version:
            version_path.parent.mkdir(parents=True, exist_ok=True)
            version_path.write_text(f"{context.target_version}\n", encoding='utf-8')

        if spec.install_command:
            await self._run_command(spec, spec.install_command, DeploymentPhase.DEPLOYING,
                                    cwd=spec.app_dir)
        await self._run_command(spec, spec.start_command, DeploymentPhase.DEPLOYING)

    async def _check_new_instance(self, spec: DeploymentSpec, context: DeploymentContext):
        healthy, last_result, attempts = await self._poll_health(spec)
        if not healthy:
            reason = last_result.error if last_result else '无响应'
            raise DeploymentPhaseError(
                f"新实例在 {attempts} 次健康检查后仍不健康: {reason}",
                phase=DeploymentPhase.HEALTH_CHECKING.value, service_name=spec.service_name)

    async def _switch_traffic(self, spec: DeploymentSpec, context: DeploymentContext):
        if not spec.traffic_switch_command:
            self.logger.info(f"服务 {spec.service_name} 未配置切流命令，跳过切流")
            return
        await self._run_command(spec, spec.traffic_switch_command,
                                DeploymentPhase.TRAFFIC_SWITCHING)

    async def _verify(self, spec: DeploymentSpec, context: DeploymentContext):
        failures = []

        deployed_version = read_version(spec.app_dir, spec.version_file)
        if deployed_version != context.target_version:
            failures.append(f"版本不一致: 期望 {context.target_version}, 实际 {deployed_version}")

        results = await asyncio.gather(*(
            probe_url(spec.service_name, check.url, check.timeout,
                      max_response_time=check.max_response_time,
                      expected_content=check.expected_content,
                      expected_status=check.expected_status)
            for check in spec.verification_checks
        ))
        for check, result in zip(spec.verification_checks, results):
            if not result.healthy:
                failures.append(f"{check.url}: {result.error}")

        if failures:
            raise DeploymentPhaseError(
                f"切流后验证失败: {'; '.join(failures)}",
                phase=DeploymentPhase.VERIFYING.value, service_name=spec.service_name)

    async def _cleanup(self, spec: DeploymentSpec, context: DeploymentContext):
        """清理临时文件并删除超出保留数量的旧备份，失败只记录日志"""
        self._remove_staging(context)
        try:
            removed = await asyncio.to_thread(self.backup_manager.prune, spec)
            if removed:
                self.logger.info(f"服务 {spec.service_name} 清理了 {len(removed)} 个旧备份")
        except (OSError, OrchestratorError) as e:
            self.logger.warning(f"服务 {spec.service_name} 清理旧备份失败: {e}")

    async def _rollback(self, spec: DeploymentSpec,
                        context: DeploymentContext) -> DeploymentResult:
        point = context.rollback_point
        failed_phase = context.phase
        self.logger.warning(
            f"部署 {context.deployment_id} 在阶段 {failed_phase.value} 失败，"
            f"开始回滚到版本 {point.previous_version}")
        await self._notify(NotificationEvent(
            event_type=EventType.ROLLBACK,
            service_name=spec.service_name,
            status=failed_phase.value,
            severity=Severity.WARNING,
            title=f"{spec.service_name} 部署失败，开始回滚",
            error_message=context.error,
            metadata=self._event_metadata(context, previous_version=point.previous_version)
        ))

        try:
            try:
                await self._run_command(spec, spec.stop_command, failed_phase)
            except DeploymentPhaseError as e:
                self.logger.warning(f"回滚时停止服务失败，继续恢复: {e.message}")

            await asyncio.to_thread(self.backup_manager.restore, spec, point)
            await self._run_command(spec, spec.start_command, failed_phase)

            healthy, last_result, attempts = await self._poll_health(spec)
            if not healthy:
                reason = last_result.error if last_result else '无响应'
                raise RollbackError(f"回滚后服务在 {attempts} 次健康检查后仍不健康: {reason}",
                                    service_name=spec.service_name)

            restored_version = read_version(spec.app_dir, spec.version_file)
            if restored_version != point.previous_version:
                raise RollbackError(
                    f"回滚后版本不一致: 期望 {point.previous_version}, 实际 {restored_version}",
                    service_name=spec.service_name)

        except Exception as rollback_error:
            self.logger.critical(
                f"部署 {context.deployment_id} 回滚失败，需要人工介入: "
                f"{self._describe(rollback_error)}", exc_info=not isinstance(
                    rollback_error, OrchestratorError))
            context.error = f"{context.error}; 回滚失败: {self._describe(rollback_error)}"
            await self._notify(NotificationEvent(
                event_type=EventType.ESCALATION,
                service_name=spec.service_name,
                status=DeploymentPhase.FAILED.value,
                severity=Severity.CRITICAL,
                title=f"{spec.service_name} 回滚失败，需要人工介入",
                error_message=context.error,
                metadata=self._event_metadata(context, backup_location=point.backup_location)
            ))
            return await self._finish(context, DeploymentPhase.FAILED, escalated=True)
        finally:
            self._remove_staging(context)

        self.logger.info(f"部署 {context.deployment_id} 已回滚到版本 {point.previous_version}")
        return await self._finish(context, DeploymentPhase.ROLLED_BACK)

    async def _poll_health(self, spec: DeploymentSpec) -> Tuple[bool, Optional[ProbeResult], int]:
        config = RetryConfig(
            max_attempts=spec.health_check_attempts,
            base_delay=spec.health_check_interval,
            attempt_timeout=spec.health_check_timeout + HEALTH_CHECK_TIMEOUT_GRACE
        )
        return await poll_until(
            lambda: probe_url(spec.service_name, spec.health_check_url,
                              spec.health_check_timeout, expected_content=spec.expected_content),
            lambda result: result.healthy,
            config
        )

    async def _run_command(self, spec: DeploymentSpec, command, phase: DeploymentPhase,
                           cwd: Optional[str] = None):
        try:
            await self.command_runner.run_checked(command, timeout=spec.command_timeout, cwd=cwd)
        except CommandError as e:
            raise DeploymentPhaseError(f"命令执行失败: {e.message}", phase=phase.value,
                                       service_name=spec.service_name, cause=e)

    def _remove_staging(self, context: DeploymentContext):
        if context.staging_dir:
            shutil.rmtree(context.staging_dir, ignore_errors=True)
            context.staging_dir = None

    async def _enter(self, context: DeploymentContext, phase: DeploymentPhase):
        context.transition(phase)
        self.logger.info(f"部署 {context.deployment_id} 进入阶段: {phase.value}")
        await self._notify_phase(context)

    async def _notify_phase(self, context: DeploymentContext):
        await self._notify(NotificationEvent(
            event_type=EventType.DEPLOYMENT_PHASE,
            service_name=context.service_name,
            status=context.phase.value,
            severity=Severity.INFO,
            title=f"{context.service_name} 部署阶段: {context.phase.value}",
            metadata=self._event_metadata(context)
        ))

    async def _finish(self, context: DeploymentContext, phase: DeploymentPhase,
                      escalated: bool = False) -> DeploymentResult:
        context.transition(phase)
        result = DeploymentResult.from_context(context, escalated=escalated)
        await self._notify(NotificationEvent(
            event_type=EventType.DEPLOYMENT_SUMMARY,
            service_name=context.service_name,
            status=phase.value,
            severity=SUMMARY_SEVERITY[phase],
            title=f"{context.service_name} 部署 {context.target_version}: {phase.value}",
            error_message=context.error,
            metadata=self._event_metadata(
                context, duration=round(result.duration, 3), escalated=escalated,
                phases=[p.value for p, _ in context.phase_history])
        ))
        return result

    async def _notify(self, event: NotificationEvent):
        if self.dispatcher is not None:
            await self.dispatcher.notify(event)

    @staticmethod
    def _event_metadata(context: DeploymentContext, **extra) -> Dict[str, Any]:
        return {
            'deployment_id': context.deployment_id,
            'target_version': context.target_version,
            'phase': context.phase.value,
            **extra,
        }

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, OrchestratorError):
            return error.message
        return f"{type(error).__name__}: {error}"

    def _log_failure(self, context: DeploymentContext, error: Exception):
        self.logger.error(
            f"部署 {context.deployment_id} 在阶段 {context.phase.value} 失败: "
            f"{self._describe(error)}", exc_info=not isinstance(error, OrchestratorError))
