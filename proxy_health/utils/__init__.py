"""工具模块"""

from .exceptions import ProxyHealthError, ConfigError, ProbeError, AlertError
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'ProxyHealthError', 'ConfigError', 'ProbeError', 'AlertError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
