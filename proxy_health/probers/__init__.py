"""代理探测器模块"""

from .base import BaseProber
from .factory import ProberFactory, RoutingProber, prober_factory, register_prober
from .http_prober import HttpProxyProber
from .tcp_prober import TcpConnectProber

__all__ = ['BaseProber', 'ProberFactory', 'RoutingProber', 'prober_factory',
           'register_prober', 'HttpProxyProber', 'TcpConnectProber']
