"""健康检查相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, Tuple, Union, ClassVar

from ..utils.exceptions import ConfigError


BODY_SNIPPET_LIMIT = 500


class ServiceStatus(Enum):
    """服务健康状态"""
    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"


# ---------------------------------------------------------------------------
# 恢复动作：封闭的变体集合，由 RecoveryActionExecutor 穷举分派
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RestartService:
    """重启服务进程"""
    kind: ClassVar[str] = 'restart_service'
    service: Optional[str] = None
    command: Optional[Tuple[str, ...]] = None
    timeout: float = 60.0


@dataclass(frozen=True)
class ClearCache:
    """清理缓存"""
    kind: ClassVar[str] = 'clear_cache'
    command: Optional[Tuple[str, ...]] = None
    cache_type: str = 'redis'
    timeout: float = 30.0


@dataclass(frozen=True)
class ScaleService:
    """调整服务实例数"""
    kind: ClassVar[str] = 'scale_service'
    replicas: int = 2
    service: Optional[str] = None
    command: Optional[Tuple[str, ...]] = None
    timeout: float = 120.0


@dataclass(frozen=True)
class Webhook:
    """向指定地址推送恢复请求"""
    kind: ClassVar[str] = 'webhook'
    url: str = ''
    payload: Tuple[Tuple[str, Any], ...] = ()
    headers: Tuple[Tuple[str, str], ...] = ()
    timeout: float = 10.0


RecoveryAction = Union[RestartService, ClearCache, ScaleService, Webhook]

RECOVERY_ACTION_TYPES = {
    cls.kind: cls for cls in (RestartService, ClearCache, ScaleService, Webhook)
}


def _as_command(value: Any, action_kind: str) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"恢复动作 {action_kind} 的 command 必须是字符串或字符串列表")


def parse_recovery_action(config: Dict[str, Any]) -> RecoveryAction:
    """将配置中的 {type, params} 解析为恢复动作变体

    Raises:
        ConfigError: 类型未知或参数无效
    """
    if not isinstance(config, dict):
        raise ConfigError("恢复动作配置必须是字典类型")

    action_kind = config.get('type')
    if action_kind not in RECOVERY_ACTION_TYPES:
        raise ConfigError(
            f"不支持的恢复动作类型: '{action_kind}'，"
            f"支持的类型: {sorted(RECOVERY_ACTION_TYPES)}")

    params = dict(config.get('params') or {})
    command = _as_command(params.pop('command', None), action_kind)

    try:
        if action_kind == RestartService.kind:
            return RestartService(command=command, **params)
        if action_kind == ClearCache.kind:
            return ClearCache(command=command, **params)
        if action_kind == ScaleService.kind:
            replicas = params.get('replicas', 2)
            if not isinstance(replicas, int) or replicas < 0:
                raise ConfigError("scale_service 的 replicas 必须是非负整数")
            return ScaleService(command=command, **params)

        url = params.pop('url', '')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigError(f"webhook 恢复动作的 url 无效: {url!r}")
        payload = tuple(sorted((params.pop('payload', None) or {}).items()))
        headers = tuple(sorted((params.pop('headers', None) or {}).items()))
        return Webhook(url=url, payload=payload, headers=headers, **params)
    except TypeError as e:
        raise ConfigError(f"恢复动作 {action_kind} 参数无效: {e}")


# ---------------------------------------------------------------------------
# 服务与探测
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServiceSpec:
    """被监控服务的静态描述，启动时加载后只读"""
    name: str
    health_check_url: str
    timeout: float = 10.0
    max_response_time: Optional[float] = None
    expected_content: Optional[str] = None
    alert_threshold: int = 3
    auto_recover: bool = False
    recovery_actions: Tuple[RecoveryAction, ...] = ()
    method: str = 'GET'
    headers: Tuple[Tuple[str, str], ...] = ()
    max_recovery_attempts_before_alert: Optional[int] = None

    @classmethod
    def from_config(cls, name: str, config: Dict[str, Any]) -> 'ServiceSpec':
        """从配置字典构建服务描述"""
        actions = tuple(
            parse_recovery_action(item) for item in config.get('recovery_actions', []) or []
        )
        return cls(
            name=name,
            health_check_url=config.get('health_check_url') or config.get('url', ''),
            timeout=float(config.get('timeout', 10)),
            max_response_time=config.get('max_response_time'),
            expected_content=config.get('expected_content'),
            alert_threshold=int(config.get('alert_threshold', 3)),
            auto_recover=bool(config.get('auto_recover', False)),
            recovery_actions=actions,
            method=str(config.get('method', 'GET')).upper(),
            headers=tuple(sorted((config.get('headers') or {}).items())),
            max_recovery_attempts_before_alert=config.get(
                'max_recovery_attempts_before_alert'),
        )


@dataclass
class ProbeResult:
    """一次健康探测的结果"""
    service_name: str
    healthy: bool
    latency: float
    status_code: Optional[int] = None
    error: Optional[str] = None
    body: str = ''
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ServiceHealthState:
    """单个服务的可变健康状态，仅由其 ServiceHealthTracker 修改"""
    status: ServiceStatus = ServiceStatus.UNKNOWN
    last_checked_at: Optional[datetime] = None
    consecutive_failures: int = 0
    last_result: Optional[ProbeResult] = None
    recovery_attempts: int = 0
    alerted: bool = False


@dataclass(frozen=True)
class ServiceStatusSnapshot:
    """对外提供的只读状态快照"""
    service_name: str
    status: ServiceStatus
    last_checked_at: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str] = None
    last_latency: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service_name': self.service_name,
            'status': self.status.value,
            'last_checked_at': self.last_checked_at.isoformat() if self.last_checked_at else None,
            'consecutive_failures': self.consecutive_failures,
            'last_error': self.last_error,
            'last_latency': self.last_latency,
        }


# ---------------------------------------------------------------------------
# 通知事件
# ---------------------------------------------------------------------------

class EventType(Enum):
    """通知事件类型"""
    ALERT = "alert"
    RECOVERY = "recovery"
    RECOVERY_ACTION = "recovery_action"
    DEPLOYMENT_PHASE = "deployment_phase"
    ROLLBACK = "rollback"
    DEPLOYMENT_SUMMARY = "deployment_summary"
    ESCALATION = "escalation"
    TEST = "test"


class Severity(Enum):
    """事件严重程度，附带聊天机器人卡片颜色"""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def color(self) -> str:
        return {
            Severity.INFO: '#36a64f',
            Severity.WARNING: '#ff9f00',
            Severity.CRITICAL: '#d00000',
        }[self]


@dataclass
class NotificationEvent:
    """通知消息模型"""
    event_type: EventType
    service_name: str
    status: str  # "DOWN", "UP", 部署阶段名等
    severity: Severity = Severity.INFO
    title: str = ''
    error_message: Optional[str] = None
    consecutive_failures: Optional[int] = None
    response_time: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def template_vars(self) -> Dict[str, str]:
        """模板渲染使用的变量"""
        template_vars = {
            'event_type': self.event_type.value,
            'service_name': self.service_name,
            'status': self.status,
            'severity': self.severity.value,
            'color': self.severity.color,
            'title': self.title or f"{self.service_name} {self.status}",
            'timestamp': self.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'error_message': self.error_message or '无',
            'consecutive_failures': str(self.consecutive_failures)
            if self.consecutive_failures is not None else '0',
            'response_time': f"{self.response_time:.3f}" if self.response_time is not None else '未知',
        }
        for key, value in self.metadata.items():
            template_vars[f'metadata_{key}'] = str(value)
        return template_vars

    def to_payload(self) -> Dict[str, Any]:
        """默认的 JSON 负载"""
        return {
            'event_type': self.event_type.value,
            'service_name': self.service_name,
            'status': self.status,
            'severity': self.severity.value,
            'color': self.severity.color,
            'title': self.title or f"{self.service_name} {self.status}",
            'error_message': self.error_message,
            'consecutive_failures': self.consecutive_failures,
            'response_time': self.response_time,
            'timestamp': self.timestamp.isoformat(),
            'metadata': self.metadata,
        }


def render_template(template_str: str, variables: Dict[str, str]) -> str:
    """使用 {{variable}} 语法进行字符串替换"""
    rendered = template_str
    for key, value in variables.items():
        rendered = rendered.replace(f'{{{{{key}}}}}', value)
    return rendered

