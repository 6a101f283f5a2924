"""探测器工厂"""

from typing import Dict, Type, Any, Optional

from .base import BaseProber
from ..models.health import ProxyTarget
from ..utils.exceptions import ProbeError, ErrorCode


class ProberFactory:
    """探测器工厂类，按代理类型创建对应的探测器"""

    def __init__(self):
        self._probers: Dict[str, Type[BaseProber]] = {}

    def register_prober(self, proxy_type: str, prober_class: Type[BaseProber]):
        """
        注册探测器类

        Args:
            proxy_type: 代理类型名称
            prober_class: 探测器类

        Raises:
            ProbeError: 注册失败
        """
        if not issubclass(prober_class, BaseProber):
            raise ProbeError(f"探测器类 {prober_class.__name__} 必须继承自 BaseProber",
                             ErrorCode.PROBER_INITIALIZATION_ERROR)

        if proxy_type in self._probers:
            raise ProbeError(f"代理类型 '{proxy_type}' 已经注册了探测器",
                             ErrorCode.PROBER_INITIALIZATION_ERROR)

        self._probers[proxy_type] = prober_class

    def unregister_prober(self, proxy_type: str):
        """取消注册探测器类"""
        self._probers.pop(proxy_type, None)

    def create_prober(self, proxy_type: str,
                      config: Optional[Dict[str, Any]] = None) -> BaseProber:
        """
        创建探测器实例

        Args:
            proxy_type: 代理类型
            config: 探测器配置

        Returns:
            BaseProber: 探测器实例

        Raises:
            ProbeError: 类型不支持或配置无效
        """
        prober_class = self.get_prober_class(proxy_type)
        prober = prober_class(config or {})

        if not prober.validate_config():
            raise ProbeError(f"代理类型 '{proxy_type}' 的探测器配置验证失败",
                             ErrorCode.PROBER_INITIALIZATION_ERROR,
                             proxy_type=proxy_type, recoverable=False)

        return prober

    def get_supported_types(self) -> list:
        """获取支持的代理类型列表"""
        return list(self._probers.keys())

    def is_type_supported(self, proxy_type: str) -> bool:
        return proxy_type in self._probers

    def get_prober_class(self, proxy_type: str) -> Type[BaseProber]:
        """
        获取指定代理类型的探测器类

        Raises:
            ProbeError: 代理类型不支持
        """
        if proxy_type not in self._probers:
            raise ProbeError(f"不支持的代理类型: '{proxy_type}'",
                             ErrorCode.PROBER_INITIALIZATION_ERROR, proxy_type=proxy_type)

        return self._probers[proxy_type]


# 全局工厂实例
prober_factory = ProberFactory()


def register_prober(*proxy_types: str):
    """
    装饰器：为一个或多个代理类型注册探测器类

    Args:
        proxy_types: 代理类型名称
    """
    def decorator(prober_class: Type[BaseProber]):
        for proxy_type in proxy_types:
            prober_factory.register_prober(proxy_type, prober_class)
        return prober_class

    return decorator


class RoutingProber(BaseProber):
    """按代理类型把探测分派给已注册探测器的组合探测器

    每种探测器类只创建一个实例；未注册的代理类型使用 fallback_type 对应的探测器。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 factory: Optional[ProberFactory] = None,
                 fallback_type: str = 'tcp'):
        super().__init__(config)
        self.factory = factory or prober_factory
        self.fallback_type = fallback_type
        self._instances: Dict[Type[BaseProber], BaseProber] = {}

    def prober_for(self, target: ProxyTarget) -> BaseProber:
        """获取处理该代理类型的探测器实例"""
        proxy_type = target.proxy_type
        if not self.factory.is_type_supported(proxy_type):
            self.logger.debug(
                f"代理 {target.id} 的类型 '{proxy_type}' 没有专用探测器，使用 {self.fallback_type}")
            proxy_type = self.fallback_type

        prober_class = self.factory.get_prober_class(proxy_type)
        if prober_class not in self._instances:
            self._instances[prober_class] = self.factory.create_prober(proxy_type, self.config)
        return self._instances[prober_class]

    async def probe(self, target: ProxyTarget) -> None:
        await self.prober_for(target).probe(target)

    async def close(self):
        for prober in self._instances.values():
            await prober.close()
        self._instances.clear()
