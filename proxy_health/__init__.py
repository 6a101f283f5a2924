"""代理健康监控与自适应测试调度"""

__version__ = '1.0.0'

from .models import HealthStatus, MonitoringConfig, ProbeResult, ProxyTarget
from .services import ProxyHealthMonitor

__all__ = ['ProxyHealthMonitor', 'HealthStatus', 'MonitoringConfig', 'ProbeResult',
           'ProxyTarget', '__version__']
