"""代理健康监控入口

把注册表、调度器和告警管理器组合在一起，对外提供查询和控制接口
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .health_registry import HealthRegistry
from .scheduler import PassReport, ResultCallback, TestScheduler
from .scoring import reclassify, round_half_up
from ..alerts.base import BaseNotifier
from ..alerts.manager import AlertManager, FailoverCallback
from ..models.health import Alert, HealthMetrics, HealthStatus, MonitoringConfig, ProxyTarget
from ..probers.base import BaseProber
from ..utils.exceptions import ConfigError

DEFAULT_ALERT_RETENTION = 100


class ProxyHealthMonitor:
    """代理健康监控器"""

    def __init__(self, prober: BaseProber,
                 config: Optional[MonitoringConfig] = None,
                 alert_retention: int = DEFAULT_ALERT_RETENTION,
                 clock: Callable[[], datetime] = datetime.now):
        """
        初始化监控器

        Args:
            prober: 代理探测器
            config: 监控配置，默认使用 MonitoringConfig()
            alert_retention: 每轮测试后最多保留的告警数量
            clock: 当前时间函数
        """
        if alert_retention <= 0:
            raise ConfigError("alert_retention 必须是正整数", field='alert_retention')

        self.config = config or MonitoringConfig()
        self.alert_retention = alert_retention
        self.prober = prober
        self.logger = logging.getLogger(__name__)

        self.registry = HealthRegistry(clock=clock)
        self.alert_manager = AlertManager(self.config, clock=clock)
        self.scheduler = TestScheduler(self.registry, prober, self.alert_manager,
                                       self.config, clock=clock)
        self.scheduler.add_pass_callback(self._on_pass_complete)

    # ---- 代理与查询 ----

    def set_targets(self, targets: Iterable[ProxyTarget]):
        """设置被监控的代理列表，已有代理的指标保留，被移除代理的指标和冷却记录一并删除"""
        added, removed = self.registry.reconcile(targets)
        for target_id in removed:
            self.alert_manager.forget_target(target_id)
        return added, removed

    def get_targets(self) -> List[ProxyTarget]:
        return [self.registry.get_target(target_id) for target_id in self.registry.target_ids()]

    def get_metrics(self, target_id: str) -> Optional[HealthMetrics]:
        return self.registry.get(target_id)

    def get_all_metrics(self) -> List[HealthMetrics]:
        return self.registry.get_all()

    def get_alerts(self) -> List[Alert]:
        """获取告警列表，最新的在前"""
        return self.alert_manager.get_alerts()

    def acknowledge_alert(self, alert_id: str) -> bool:
        return self.alert_manager.acknowledge(alert_id)

    def clear_alerts(self):
        self.alert_manager.clear_alerts()

    def get_stats(self) -> Dict[str, Any]:
        """
        获取监控统计信息

        Returns:
            Dict[str, Any]: 代理数量、各状态数量、平均健康分、平均响应时间、告警数量等
        """
        all_metrics = self.registry.get_all()
        counts_by_status = {status.value: 0 for status in HealthStatus}
        for metrics in all_metrics:
            counts_by_status[metrics.status.value] += 1

        total = len(all_metrics)
        if total:
            average_health_score = round_half_up(
                sum(m.health_score for m in all_metrics) / total)
            average_response_time = round_half_up(
                sum(m.average_response_time for m in all_metrics) / total)
        else:
            average_health_score = 0
            average_response_time = 0

        last_pass = self.scheduler.last_pass
        return {
            'total_targets': total,
            'counts_by_status': counts_by_status,
            'average_health_score': average_health_score,
            'average_response_time': average_response_time,
            'total_alerts': len(self.alert_manager.get_alerts()),
            'unacknowledged_alerts': self.alert_manager.unacknowledged_count(),
            'is_monitoring': self.scheduler.is_running,
            'last_pass_at': last_pass.started_at if last_pass else None
        }

    # ---- 配置 ----

    def get_config(self) -> MonitoringConfig:
        return self.config

    def set_config(self, partial: Dict[str, Any]) -> MonitoringConfig:
        """
        更新监控配置

        新阈值立即用于重新划分所有代理的状态（不产生告警），
        新的检查间隔从下一次定时触发开始生效。

        Raises:
            ConfigError: 配置无效，此时不会应用任何字段
        """
        new_config = self.config.merge(partial)
        self.config = new_config
        self.scheduler.update_config(new_config)
        self.alert_manager.update_config(new_config)

        changed = 0
        for target_id in self.registry.target_ids():
            transition = self.registry.apply(target_id, lambda m: reclassify(m, new_config))
            if transition and transition[0] != transition[1]:
                changed += 1

        self.logger.info(f"监控配置已更新: {', '.join(partial) or '无变化'}")
        if changed:
            self.logger.info(f"按新阈值重新划分状态，{changed} 个代理状态发生变化")
        return new_config

    # ---- 控制 ----

    @property
    def is_monitoring(self) -> bool:
        return self.scheduler.is_running

    async def start(self):
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()

    async def restart(self):
        await self.scheduler.restart()

    async def run_pass(self) -> Optional[PassReport]:
        """立即执行一轮测试"""
        return await self.scheduler.run_pass()

    async def queue_tests(self, target_ids: Iterable[str]) -> Optional[PassReport]:
        """立即测试指定代理"""
        return await self.scheduler.queue_tests(target_ids)

    def _on_pass_complete(self, report: PassReport):
        # 每轮结束后只保留最新的 alert_retention 条告警
        removed = self.alert_manager.prune(self.alert_retention)
        if removed:
            self.logger.debug(f"清理过期告警 {removed} 条")

    # ---- 扩展点 ----

    def add_result_callback(self, callback: ResultCallback):
        self.scheduler.add_result_callback(callback)

    def add_failover_callback(self, callback: FailoverCallback):
        self.alert_manager.add_failover_callback(callback)

    def add_notifier(self, notifier: BaseNotifier):
        self.alert_manager.add_notifier(notifier)

    async def close(self):
        """停止监控，等待告警推送完成并释放探测器资源"""
        await self.stop()
        await self.alert_manager.drain()
        await self.prober.close()
