"""告警模块"""

from .base import BaseNotifier
from .http_notifier import HttpNotifier
from .manager import AlertManager

__all__ = [
    'BaseNotifier',
    'AlertManager',
    'HttpNotifier'
]
