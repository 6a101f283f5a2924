"""代理探测器基类"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from ..models.health import ProbeResult, ProxyTarget
from ..utils.exceptions import ProbeError
from ..utils.log_manager import get_logger

TIMEOUT_ERROR_MESSAGE = 'Timeout'


class BaseProber(ABC):
    """代理探测器抽象基类

    子类实现 probe()：探测成功时正常返回，失败时抛出异常。
    调度器调用的是 test()，它负责超时控制并把任何异常转换为失败结果。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        初始化探测器

        Args:
            config: 探测器配置参数
        """
        self.config = config or {}
        self.prober_type = self.__class__.__name__.replace('Prober', '').lower()
        self.logger = get_logger(f'prober.{self.prober_type}')

    @abstractmethod
    async def probe(self, target: ProxyTarget) -> None:
        """
        对代理执行一次连通性检查

        Args:
            target: 被探测的代理

        Raises:
            ProbeError: 代理不可用
        """
        pass

    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        return True

    async def test(self, target: ProxyTarget, timeout_ms: float) -> ProbeResult:
        """
        执行一次带超时的探测，不会抛出异常

        Args:
            target: 被探测的代理
            timeout_ms: 超时时间（毫秒）

        Returns:
            ProbeResult: 探测结果，response_time 为毫秒
        """
        start_time = time.monotonic()
        try:
            await asyncio.wait_for(self.probe(target), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return ProbeResult(False, self._elapsed_ms(start_time), TIMEOUT_ERROR_MESSAGE)
        except ProbeError as e:
            return ProbeResult(False, self._elapsed_ms(start_time), e.message)
        except Exception as e:
            self.logger.debug(f"探测代理 {target.id} 时发生异常: {e!r}")
            return ProbeResult(False, self._elapsed_ms(start_time), str(e) or type(e).__name__)

        return ProbeResult(True, self._elapsed_ms(start_time))

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return (time.monotonic() - start_time) * 1000

    async def close(self):
        """释放探测器持有的资源"""
        pass
