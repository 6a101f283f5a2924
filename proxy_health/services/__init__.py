"""服务模块"""

from .config_manager import ConfigManager
from .config_watcher import ConfigWatcher
from .health_monitor import ProxyHealthMonitor
from .health_registry import HealthRegistry
from .scheduler import PassReport, TestScheduler
from .scoring import apply_probe_result, classify_status, compute_health_score

__all__ = [
    'ConfigManager', 'ConfigWatcher', 'ProxyHealthMonitor', 'HealthRegistry',
    'PassReport', 'TestScheduler',
    'apply_probe_result', 'classify_status', 'compute_health_score'
]
