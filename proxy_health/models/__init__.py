"""数据模型模块"""

from .health import (
    Alert,
    AlertSeverity,
    AlertType,
    HealthMetrics,
    HealthStatus,
    MonitoringConfig,
    ProbeResult,
    ProxyTarget,
)

__all__ = ['Alert', 'AlertSeverity', 'AlertType', 'HealthMetrics', 'HealthStatus',
           'MonitoringConfig', 'ProbeResult', 'ProxyTarget']
