"""自定义异常类和错误代码"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002

    # 探测错误 (3000-3999)
    PROBE_SPEC_INVALID = 3000
    CONNECTION_ERROR = 3001
    TIMEOUT_ERROR = 3002

    # 命令与恢复动作错误 (4000-4999)
    COMMAND_FAILED = 4000
    COMMAND_TIMEOUT = 4001
    COMMAND_NOT_FOUND = 4002
    RECOVERY_ACTION_FAILED = 4100

    # 通知错误 (5000-5999)
    NOTIFICATION_CONFIG_ERROR = 5000
    NOTIFICATION_SEND_ERROR = 5001
    NOTIFICATION_TEMPLATE_ERROR = 5002

    # 部署错误 (7000-7999)
    DEPLOYMENT_ERROR = 7000
    PRECHECK_FAILED = 7001
    DEPLOYMENT_IN_PROGRESS = 7002
    PHASE_FAILED = 7003
    ROLLBACK_FAILED = 7004
    DEPLOYMENT_CANCELLED = 7005
    ARTIFACT_ERROR = 7006
    BACKUP_ERROR = 7007


class OrchestratorError(Exception):
    """编排系统基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(OrchestratorError):
    """配置相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class ProbeError(OrchestratorError):
    """健康探测相关异常，仅用于探测配置本身无效的情况"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PROBE_SPEC_INVALID,
        service_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if service_name:
            details['service_name'] = service_name
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class CommandError(OrchestratorError):
    """外部命令执行异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.COMMAND_FAILED,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if command:
            details['command'] = command
        if exit_code is not None:
            details['exit_code'] = exit_code
        if stderr:
            details['stderr'] = stderr[:500]
        super().__init__(message, error_code, details, **kwargs)
        self.exit_code = exit_code


class RecoveryActionError(OrchestratorError):
    """恢复动作执行异常"""

    def __init__(
        self,
        message: str,
        action_kind: Optional[str] = None,
        service_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if action_kind:
            details['action_kind'] = action_kind
        if service_name:
            details['service_name'] = service_name
        super().__init__(message, ErrorCode.RECOVERY_ACTION_FAILED, details, **kwargs)


class NotificationError(OrchestratorError):
    """通知相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NOTIFICATION_SEND_ERROR,
        notifier_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if notifier_name:
            details['notifier_name'] = notifier_name
        super().__init__(message, error_code, details, **kwargs)


class NotificationConfigError(NotificationError):
    """通知渠道配置异常"""

    def __init__(self, message: str, notifier_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.NOTIFICATION_CONFIG_ERROR,
            notifier_name=notifier_name,
            recoverable=False,
            **kwargs
        )


class NotificationSendError(NotificationError):
    """通知发送异常"""

    def __init__(self, message: str, notifier_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.NOTIFICATION_SEND_ERROR,
            notifier_name=notifier_name,
            recoverable=True,
            **kwargs
        )


class DeploymentError(OrchestratorError):
    """部署相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DEPLOYMENT_ERROR,
        service_name: Optional[str] = None,
        phase: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if service_name:
            details['service_name'] = service_name
        if phase:
            details['phase'] = phase
        super().__init__(message, error_code, details, **kwargs)
        self.phase = phase


class PrecheckError(DeploymentError):
    """部署前置检查失败"""

    def __init__(self, message: str, failures: Optional[list] = None, **kwargs):
        super().__init__(message, ErrorCode.PRECHECK_FAILED, phase='prechecking', **kwargs)
        self.failures = failures or []


class DeploymentPhaseError(DeploymentError):
    """部署阶段执行失败"""

    def __init__(self, message: str, phase: str, **kwargs):
        super().__init__(message, ErrorCode.PHASE_FAILED, phase=phase, **kwargs)


class DeploymentInProgressError(DeploymentError):
    """同一服务已有部署正在进行"""

    def __init__(self, service_name: str, **kwargs):
        super().__init__(
            f"服务 {service_name} 已有部署正在进行，拒绝并发部署",
            ErrorCode.DEPLOYMENT_IN_PROGRESS,
            service_name=service_name,
            recoverable=False,
            **kwargs
        )


class DeploymentCancelledError(DeploymentError):
    """部署在阶段边界被取消"""

    def __init__(self, message: str, phase: Optional[str] = None, **kwargs):
        super().__init__(message, ErrorCode.DEPLOYMENT_CANCELLED, phase=phase, **kwargs)


class RollbackError(DeploymentError):
    """回滚失败，需要人工介入"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.ROLLBACK_FAILED, recoverable=False, **kwargs)


class ArtifactError(DeploymentError):
    """制品获取或解包失败"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.ARTIFACT_ERROR, **kwargs)


class BackupError(DeploymentError):
    """备份创建或恢复失败"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.BACKUP_ERROR, **kwargs)
