"""健康指标注册表模块

负责维护 代理ID -> 健康指标 的映射，并与当前被监控的代理列表保持一致
"""

import copy
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from ..models.health import HealthMetrics, ProxyTarget

T = TypeVar('T')


class HealthRegistry:
    """健康指标注册表

    指标记录只能通过 apply() 修改；get()/get_all() 返回副本。
    所有修改都是同步完成的，不会跨越 await，因此在单个事件循环内
    同一代理的指标不会被并发修改。
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        """初始化注册表

        Args:
            clock: 当前时间函数，新建指标时作为 last_check
        """
        self._clock = clock
        self._metrics: Dict[str, HealthMetrics] = {}
        self._targets: Dict[str, ProxyTarget] = {}
        self.logger = logging.getLogger(__name__)

    def reconcile(self, targets: Iterable[ProxyTarget]) -> Tuple[List[str], List[str]]:
        """与当前代理列表同步

        新代理创建默认指标；不在列表中的代理连同其指标一起移除；
        已存在的代理只更新连接信息，指标保持不变。

        Args:
            targets: 当前被监控的代理列表

        Returns:
            (新增的代理ID列表, 移除的代理ID列表)
        """
        current: Dict[str, ProxyTarget] = {}
        for target in targets:
            current[target.id] = target

        added = [target_id for target_id in current if target_id not in self._metrics]
        removed = [target_id for target_id in self._metrics if target_id not in current]

        for target_id in removed:
            del self._metrics[target_id]
            self._targets.pop(target_id, None)

        now = self._clock()
        for target_id in added:
            self._metrics[target_id] = HealthMetrics(target_id=target_id, last_check=now)

        self._targets = current

        if added:
            self.logger.info(f"新增监控代理 {len(added)} 个: {', '.join(added)}")
        if removed:
            self.logger.info(f"移除监控代理 {len(removed)} 个: {', '.join(removed)}")

        return added, removed

    def get(self, target_id: str) -> Optional[HealthMetrics]:
        """获取指定代理的指标副本，不存在时返回None"""
        metrics = self._metrics.get(target_id)
        return copy.copy(metrics) if metrics is not None else None

    def get_all(self) -> List[HealthMetrics]:
        """获取所有代理的指标副本"""
        return [copy.copy(metrics) for metrics in self._metrics.values()]

    def get_target(self, target_id: str) -> Optional[ProxyTarget]:
        """获取代理的连接信息"""
        return self._targets.get(target_id)

    def target_ids(self) -> List[str]:
        """按注册顺序返回所有代理ID"""
        return list(self._targets)

    def apply(self, target_id: str, mutation: Callable[[HealthMetrics], T]) -> Optional[T]:
        """对指定代理的指标执行修改

        代理不存在时（例如在探测过程中被移除）不做任何操作。

        Args:
            target_id: 代理ID
            mutation: 接收指标对象并原地修改的函数

        Returns:
            mutation 的返回值；代理不存在时返回None
        """
        metrics = self._metrics.get(target_id)
        if metrics is None:
            self.logger.debug(f"代理 {target_id} 已不在监控列表中，忽略指标更新")
            return None
        return mutation(metrics)

    def __len__(self) -> int:
        return len(self._metrics)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._metrics
