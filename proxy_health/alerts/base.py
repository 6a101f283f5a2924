"""告警通知器基类"""

from abc import ABC, abstractmethod
from typing import Dict, Any

from ..models.health import Alert


class BaseNotifier(ABC):
    """告警通知器抽象基类，把告警管理器产生的告警投递到外部渠道"""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化通知器

        Args:
            name: 通知器名称
            config: 通知器配置参数
        """
        self.name = name
        self.config = config
        self.notifier_type = self.__class__.__name__.replace('Notifier', '').lower()

    @abstractmethod
    async def send_alert(self, alert: Alert) -> bool:
        """
        发送告警

        Args:
            alert: 告警记录

        Returns:
            bool: 发送是否成功
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        pass

    def get_timeout(self) -> int:
        """
        获取超时时间配置

        Returns:
            int: 超时时间（秒）
        """
        return self.config.get('timeout', 30)
