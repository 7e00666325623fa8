"""部署相关的数据模型"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, List

from ..utils.exceptions import ConfigError


class DeploymentPhase(Enum):
    """部署阶段，严格按声明顺序推进"""
    PRECHECKING = "prechecking"
    BACKUP_CREATED = "backup_created"
    DEPLOYING = "deploying"
    HEALTH_CHECKING = "health_checking"
    TRAFFIC_SWITCHING = "traffic_switching"
    VERIFYING = "verifying"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DeploymentPhase.COMPLETED, DeploymentPhase.ROLLED_BACK,
                        DeploymentPhase.FAILED)


# 正常推进顺序
PHASE_SEQUENCE = (
    DeploymentPhase.PRECHECKING,
    DeploymentPhase.BACKUP_CREATED,
    DeploymentPhase.DEPLOYING,
    DeploymentPhase.HEALTH_CHECKING,
    DeploymentPhase.TRAFFIC_SWITCHING,
    DeploymentPhase.VERIFYING,
    DeploymentPhase.CLEANUP,
    DeploymentPhase.COMPLETED,
)

# 失败后需要回滚的阶段
ROLLBACK_PHASES = (
    DeploymentPhase.DEPLOYING,
    DeploymentPhase.HEALTH_CHECKING,
    DeploymentPhase.TRAFFIC_SWITCHING,
    DeploymentPhase.VERIFYING,
)


@dataclass(frozen=True)
class RollbackPoint:
    """回滚点，创建后不可变，每次部署至多消费一次"""
    timestamp: datetime
    backup_location: str
    previous_version: Optional[str]
    config_snapshot_refs: Tuple[str, ...] = ()
    artifact_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'backup_location': self.backup_location,
            'previous_version': self.previous_version,
            'config_snapshot_refs': list(self.config_snapshot_refs),
            'artifact_hash': self.artifact_hash,
        }


@dataclass
class DeploymentContext:
    """一次部署运行的上下文，进入终态后丢弃"""
    service_name: str
    target_version: str
    deployment_id: str = field(
        default_factory=lambda: f"deploy-{datetime.now():%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}")
    phase: DeploymentPhase = DeploymentPhase.PRECHECKING
    rollback_point: Optional[RollbackPoint] = None
    phase_history: List[Tuple[DeploymentPhase, datetime]] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None
    staging_dir: Optional[str] = None

    def __post_init__(self):
        if not self.phase_history:
            self.phase_history.append((self.phase, self.started_at))

    def transition(self, phase: DeploymentPhase) -> None:
        """进入新阶段"""
        if self.phase.is_terminal:
            raise ValueError(f"部署 {self.deployment_id} 已处于终态 {self.phase.value}")
        self.phase = phase
        self.phase_history.append((phase, datetime.now()))
        if phase.is_terminal:
            self.finished_at = datetime.now()


@dataclass(frozen=True)
class VerificationCheck:
    """切流后的功能/性能验证项"""
    url: str
    expected_status: int = 200
    max_response_time: Optional[float] = None
    expected_content: Optional[str] = None
    timeout: float = 10.0


@dataclass(frozen=True)
class DeploymentSpec:
    """单个服务的部署参数"""
    service_name: str
    app_dir: str
    backup_dir: str
    artifact_source: str
    health_check_url: str
    start_command: Tuple[str, ...]
    stop_command: Tuple[str, ...]
    install_command: Optional[Tuple[str, ...]] = None
    traffic_switch_command: Optional[Tuple[str, ...]] = None
    config_files: Tuple[str, ...] = ()
    version_file: str = 'VERSION'
    health_check_attempts: int = 30
    health_check_interval: float = 2.0
    health_check_timeout: float = 5.0
    expected_content: Optional[str] = None
    verification_checks: Tuple[VerificationCheck, ...] = ()
    dependencies: Tuple[Dict[str, Any], ...] = ()
    max_disk_percent: float = 90.0
    max_memory_percent: float = 90.0
    backup_retention: int = 5
    command_timeout: float = 120.0
    temp_dir: Optional[str] = None

    @classmethod
    def from_config(cls, service_name: str, config: Dict[str, Any]) -> 'DeploymentSpec':
        """从配置字典构建部署参数

        Raises:
            ConfigError: 缺少必需字段或字段类型错误
        """
        required_fields = ['app_dir', 'backup_dir', 'artifact_source', 'health_check_url',
                           'start_command', 'stop_command']
        missing = [f for f in required_fields if not config.get(f)]
        if missing:
            raise ConfigError(f"服务 '{service_name}' 的部署配置缺少必需字段: {missing}")

        def as_command(key: str) -> Optional[Tuple[str, ...]]:
            value = config.get(key)
            if value is None:
                return None
            if isinstance(value, str):
                return tuple(value.split())
            if isinstance(value, list) and all(isinstance(v, str) for v in value):
                return tuple(value)
            raise ConfigError(f"服务 '{service_name}' 的 {key} 必须是字符串或字符串列表")

        checks = []
        for item in config.get('verification_checks', []) or []:
            if not isinstance(item, dict) or 'url' not in item:
                raise ConfigError(f"服务 '{service_name}' 的验证项必须包含 url")
            checks.append(VerificationCheck(
                url=item['url'],
                expected_status=int(item.get('expected_status', 200)),
                max_response_time=item.get('max_response_time'),
                expected_content=item.get('expected_content'),
                timeout=float(item.get('timeout', 10)),
            ))

        retention = config.get('backup_retention', 5)
        if not isinstance(retention, int) or retention < 1:
            raise ConfigError(f"服务 '{service_name}' 的 backup_retention 必须是正整数")

        return cls(
            service_name=service_name,
            app_dir=config['app_dir'],
            backup_dir=config['backup_dir'],
            artifact_source=config['artifact_source'],
            health_check_url=config['health_check_url'],
            start_command=as_command('start_command'),
            stop_command=as_command('stop_command'),
            install_command=as_command('install_command'),
            traffic_switch_command=as_command('traffic_switch_command'),
            config_files=tuple(config.get('config_files', []) or []),
            version_file=config.get('version_file', 'VERSION'),
            health_check_attempts=int(config.get('health_check_attempts', 30)),
            health_check_interval=float(config.get('health_check_interval', 2)),
            health_check_timeout=float(config.get('health_check_timeout', 5)),
            expected_content=config.get('expected_content'),
            verification_checks=tuple(checks),
            dependencies=tuple(config.get('dependencies', []) or []),
            max_disk_percent=float(config.get('max_disk_percent', 90)),
            max_memory_percent=float(config.get('max_memory_percent', 90)),
            backup_retention=retention,
            command_timeout=float(config.get('command_timeout', 120)),
            temp_dir=config.get('temp_dir'),
        )


@dataclass
class DeploymentResult:
    """部署运行的最终结果"""
    deployment_id: str
    service_name: str
    target_version: str
    final_phase: DeploymentPhase
    success: bool
    rolled_back: bool = False
    escalated: bool = False
    error: Optional[str] = None
    rollback_point: Optional[RollbackPoint] = None
    phase_history: List[Tuple[DeploymentPhase, datetime]] = field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def from_context(cls, context: DeploymentContext, escalated: bool = False) -> 'DeploymentResult':
        finished_at = context.finished_at or datetime.now()
        return cls(
            deployment_id=context.deployment_id,
            service_name=context.service_name,
            target_version=context.target_version,
            final_phase=context.phase,
            success=context.phase == DeploymentPhase.COMPLETED,
            rolled_back=context.phase == DeploymentPhase.ROLLED_BACK,
            escalated=escalated,
            error=context.error,
            rollback_point=context.rollback_point,
            phase_history=list(context.phase_history),
            duration=(finished_at - context.started_at).total_seconds(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deployment_id': self.deployment_id,
            'service_name': self.service_name,
            'target_version': self.target_version,
            'final_phase': self.final_phase.value,
            'success': self.success,
            'rolled_back': self.rolled_back,
            'escalated': self.escalated,
            'error': self.error,
            'rollback_point': self.rollback_point.to_dict() if self.rollback_point else None,
            'phase_history': [(phase.value, ts.isoformat()) for phase, ts in self.phase_history],
            'duration': round(self.duration, 3),
        }
