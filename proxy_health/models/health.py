"""代理健康监控相关的数据模型"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class HealthStatus(str, Enum):
    """代理健康状态"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    OFFLINE = "offline"


class AlertType(str, Enum):
    """告警类型"""
    WARNING = "warning"
    CRITICAL = "critical"
    RECOVERY = "recovery"
    FAILOVER = "failover"


class AlertSeverity(str, Enum):
    """告警严重程度"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ProxyTarget:
    """被监控的代理及其连接信息"""
    id: str
    host: str
    port: int
    proxy_type: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        """告警消息和日志中使用的展示名称"""
        return self.name or f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProxyTarget':
        """从配置字典创建，配置中使用 type 表示代理类型"""
        return cls(
            id=str(data['id']),
            host=data['host'],
            port=int(data['port']),
            proxy_type=str(data.get('type', 'http')).lower(),
            username=data.get('username'),
            password=data.get('password'),
            name=data.get('name'),
            metadata=dict(data.get('metadata') or {})
        )


@dataclass
class ProbeResult:
    """单次探测结果，response_time 单位为毫秒"""
    success: bool
    response_time: float
    error: Optional[str] = None


@dataclass
class HealthMetrics:
    """单个代理的健康指标"""
    target_id: str
    response_time: float = 0.0
    average_response_time: float = 0.0
    success_rate: float = 100.0
    uptime: float = 100.0
    total_requests: int = 0
    successful_requests: int = 0
    consecutive_failures: int = 0
    health_score: int = 100
    status: HealthStatus = HealthStatus.HEALTHY
    last_check: datetime = field(default_factory=datetime.now)
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['status'] = self.status.value
        data['last_check'] = self.last_check.isoformat()
        return data


@dataclass
class Alert:
    """告警记录，创建后只有 acknowledged 可以修改"""
    id: str
    type: AlertType
    target_id: str
    message: str
    severity: AlertSeverity
    timestamp: datetime = field(default_factory=datetime.now)
    acknowledged: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'target_id': self.target_id,
            'message': self.message,
            'severity': self.severity.value,
            'timestamp': self.timestamp.isoformat(),
            'acknowledged': self.acknowledged,
            'details': self.details
        }


@dataclass(frozen=True)
class MonitoringConfig:
    """监控配置

    时间相关字段（check_interval、alert_cooldown、test_timeout、batch_delay）
    单位均为毫秒。实例不可变，运行期间通过 merge() 生成新配置替换。
    """
    check_interval: int = 300000
    health_threshold: float = 80
    warning_threshold: float = 60
    critical_threshold: float = 30
    max_consecutive_failures: int = 3
    enable_auto_failover: bool = True
    enable_alerts: bool = True
    alert_cooldown: int = 600000
    test_timeout: int = 10000
    batch_size: int = 5
    monitoring_enabled: bool = True
    batch_delay: int = 1000
    max_batches_per_pass: int = 1000

    @classmethod
    def field_names(cls):
        return [f.name for f in fields(cls)]

    def merge(self, partial: Dict[str, Any]) -> 'MonitoringConfig':
        """合并部分配置并校验，返回新的配置实例

        Raises:
            ConfigError: 包含未知字段或取值无效
        """
        from ..utils.config_validator import ConfigValidator

        ConfigValidator.validate_monitoring_config(partial, partial=True)
        merged = {**asdict(self), **partial}
        ConfigValidator.validate_monitoring_config(merged)
        return MonitoringConfig(**merged)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
