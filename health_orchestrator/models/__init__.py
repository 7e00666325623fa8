"""数据模型模块"""

from .health_check import (
    ServiceStatus, ServiceSpec, ProbeResult, ServiceHealthState, ServiceStatusSnapshot,
    RestartService, ClearCache, ScaleService, Webhook, RecoveryAction,
    parse_recovery_action, EventType, Severity, NotificationEvent
)
from .deployment import (
    DeploymentPhase, DeploymentContext, DeploymentSpec, DeploymentResult,
    RollbackPoint, VerificationCheck
)

__all__ = [
    'ServiceStatus', 'ServiceSpec', 'ProbeResult', 'ServiceHealthState',
    'ServiceStatusSnapshot', 'RestartService', 'ClearCache', 'ScaleService', 'Webhook',
    'RecoveryAction', 'parse_recovery_action', 'EventType', 'Severity',
    'NotificationEvent', 'DeploymentPhase', 'DeploymentContext', 'DeploymentSpec',
    'DeploymentResult', 'RollbackPoint', 'VerificationCheck'
]
