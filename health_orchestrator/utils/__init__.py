"""工具模块"""

from .exceptions import (
    OrchestratorError, ConfigError, ProbeError, CommandError, RecoveryActionError,
    NotificationError, DeploymentError
)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'OrchestratorError', 'ConfigError', 'ProbeError', 'CommandError',
    'RecoveryActionError', 'NotificationError', 'DeploymentError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
