"""告警管理器"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from .base import BaseNotifier
from ..models.health import (
    Alert,
    AlertSeverity,
    AlertType,
    HealthMetrics,
    HealthStatus,
    MonitoringConfig,
)
from ..utils.exceptions import AlertConfigError

FailoverCallback = Callable[[str, HealthMetrics], None]


class AlertManager:
    """告警管理器

    根据代理健康状态的变化生成告警。每个代理只有一个冷却时间戳，
    所有类型的告警共用：冷却期内该代理的任何告警都会被抑制。
    生成的告警会异步投递给已添加的通知器。
    """

    def __init__(self, config: Optional[MonitoringConfig] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        初始化告警管理器

        Args:
            config: 监控配置，使用 enable_alerts、alert_cooldown 等字段
            clock: 当前时间函数
        """
        self.config = config or MonitoringConfig()
        self._clock = clock
        self.logger = logging.getLogger(__name__)

        self._alerts: List[Alert] = []  # 按时间先后追加
        self._last_alert_times: Dict[str, datetime] = {}

        self.notifiers: List[BaseNotifier] = []
        self._failover_callbacks: List[FailoverCallback] = []
        self._delivery_tasks: Set[asyncio.Task] = set()

    def update_config(self, config: MonitoringConfig):
        """替换监控配置"""
        self.config = config

    def on_transition(self, target_id: str, old_status: HealthStatus,
                      new_status: HealthStatus, metrics: HealthMetrics,
                      label: Optional[str] = None) -> Optional[Alert]:
        """
        处理代理健康状态变化

        Args:
            target_id: 代理ID
            old_status: 旧状态
            new_status: 新状态
            metrics: 更新后的健康指标
            label: 告警消息中使用的代理名称

        Returns:
            生成的告警；未生成（状态未变、告警关闭或处于冷却期）时返回None
        """
        if not self.config.enable_alerts or old_status == new_status:
            return None

        name = label or f"Proxy {target_id}"
        score = metrics.health_score

        if new_status == HealthStatus.WARNING:
            return self.create_alert(
                AlertType.WARNING, target_id,
                f"{name} 出现异常 (健康分: {score}%)",
                AlertSeverity.MEDIUM,
                {'health_score': score, 'success_rate': metrics.success_rate,
                 'consecutive_failures': metrics.consecutive_failures}
            )
        if new_status == HealthStatus.CRITICAL:
            return self.create_alert(
                AlertType.CRITICAL, target_id,
                f"{name} 状态严重 (健康分: {score}%)",
                AlertSeverity.HIGH,
                {'health_score': score, 'success_rate': metrics.success_rate,
                 'consecutive_failures': metrics.consecutive_failures}
            )
        if new_status == HealthStatus.OFFLINE:
            return self.create_alert(
                AlertType.CRITICAL, target_id,
                f"{name} 已离线 (连续失败 {metrics.consecutive_failures} 次)",
                AlertSeverity.CRITICAL,
                {'consecutive_failures': metrics.consecutive_failures,
                 'last_error': metrics.last_error}
            )
        # 恢复为 healthy，此时旧状态一定不是 healthy
        return self.create_alert(
            AlertType.RECOVERY, target_id,
            f"{name} 已恢复 (健康分: {score}%)",
            AlertSeverity.LOW,
            {'health_score': score}
        )

    def on_failure_streak(self, target_id: str, metrics: HealthMetrics,
                          label: Optional[str] = None) -> Optional[Alert]:
        """
        连续失败次数恰好达到 max_consecutive_failures 时触发故障切换

        先调用已注册的故障切换回调（不受告警冷却影响），再生成 failover 告警。

        Returns:
            生成的告警；未触发或被抑制时返回None
        """
        if not self.config.enable_auto_failover:
            return None
        if metrics.consecutive_failures != self.config.max_consecutive_failures:
            return None

        name = label or f"Proxy {target_id}"
        self.logger.warning(
            f"代理 {name} 连续失败 {metrics.consecutive_failures} 次，触发故障切换")

        for callback in self._failover_callbacks:
            try:
                callback(target_id, metrics)
            except Exception as e:
                self.logger.error(f"故障切换回调执行失败: {e}")

        if not self.config.enable_alerts:
            return None

        return self.create_alert(
            AlertType.FAILOVER, target_id,
            f"{name} 连续失败 {metrics.consecutive_failures} 次，建议切换到备用代理",
            AlertSeverity.HIGH,
            {'consecutive_failures': metrics.consecutive_failures,
             'last_error': metrics.last_error}
        )

    def create_alert(self, alert_type: AlertType, target_id: str, message: str,
                     severity: AlertSeverity = AlertSeverity.MEDIUM,
                     details: Optional[Dict[str, Any]] = None) -> Optional[Alert]:
        """
        经过冷却检查后生成告警

        Returns:
            生成的告警；处于冷却期时返回None
        """
        now = self._clock()

        if self._in_cooldown(target_id, now):
            self.logger.debug(f"代理 {target_id} 处于告警冷却期，跳过 {alert_type.value} 告警")
            return None

        alert = Alert(
            id=f"{alert_type.value}_{target_id}_{uuid.uuid4().hex[:12]}",
            type=alert_type,
            target_id=target_id,
            message=message,
            severity=severity,
            timestamp=now,
            details=details or {}
        )
        self._alerts.append(alert)
        self._last_alert_times[target_id] = now

        log_level = logging.INFO if alert_type == AlertType.RECOVERY else logging.WARNING
        self.logger.log(log_level, f"[{severity.value}] {message}")

        self._schedule_delivery(alert)
        return alert

    def _in_cooldown(self, target_id: str, now: datetime) -> bool:
        last_alert_time = self._last_alert_times.get(target_id)
        if last_alert_time is None:
            return False
        return now - last_alert_time < timedelta(milliseconds=self.config.alert_cooldown)

    def get_alerts(self) -> List[Alert]:
        """获取所有告警，最新的在前"""
        return list(reversed(self._alerts))

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def acknowledge(self, alert_id: str) -> bool:
        """
        确认告警

        Returns:
            bool: 告警是否存在
        """
        alert = self.get_alert(alert_id)
        if alert is None:
            return False
        alert.acknowledged = True
        return True

    def unacknowledged_count(self) -> int:
        return sum(1 for alert in self._alerts if not alert.acknowledged)

    def clear_alerts(self):
        """清空告警记录，不影响冷却时间"""
        self._alerts.clear()
        self.logger.info("已清空告警记录")

    def prune(self, max_alerts: int) -> int:
        """
        只保留最新的 max_alerts 条告警

        Returns:
            int: 删除的告警数量
        """
        excess = len(self._alerts) - max_alerts
        if excess <= 0:
            return 0
        del self._alerts[:excess]
        return excess

    def forget_target(self, target_id: str):
        """移除代理的冷却记录，代理被取消监控时调用"""
        self._last_alert_times.pop(target_id, None)

    def add_failover_callback(self, callback: FailoverCallback):
        self._failover_callbacks.append(callback)

    def add_notifier(self, notifier: BaseNotifier):
        """
        添加通知器

        Raises:
            AlertConfigError: 对象不是 BaseNotifier
        """
        if not isinstance(notifier, BaseNotifier):
            raise AlertConfigError(f"通知器必须继承自BaseNotifier: {type(notifier)}")

        self.notifiers.append(notifier)
        self.logger.info(f"已添加通知器: {notifier.name} ({notifier.notifier_type})")

    def remove_notifier(self, name: str) -> bool:
        for i, notifier in enumerate(self.notifiers):
            if notifier.name == name:
                self.notifiers.pop(i)
                self.logger.info(f"已移除通知器: {name}")
                return True
        return False

    def get_notifier_names(self) -> List[str]:
        return [notifier.name for notifier in self.notifiers]

    def _schedule_delivery(self, alert: Alert):
        if not self.notifiers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.warning(f"没有运行中的事件循环，告警 {alert.id} 不会推送给通知器")
            return

        task = loop.create_task(self.send_to_notifiers(alert))
        self._delivery_tasks.add(task)
        task.add_done_callback(self._delivery_tasks.discard)

    async def send_to_notifiers(self, alert: Alert) -> int:
        """
        并发推送告警到所有通知器

        Returns:
            int: 推送成功的通知器数量
        """
        notifiers = list(self.notifiers)
        results = await asyncio.gather(
            *(notifier.send_alert(alert) for notifier in notifiers),
            return_exceptions=True
        )

        success_count = 0
        failed = []
        for notifier, result in zip(notifiers, results):
            if isinstance(result, Exception):
                self.logger.error(f"通知器 {notifier.name} 发送失败: {result}")
                failed.append(notifier.name)
            elif result:
                success_count += 1
            else:
                failed.append(notifier.name)

        if success_count:
            self.logger.info(
                f"告警推送成功 {success_count}/{len(notifiers)} 个通知器 "
                f"(代理: {alert.target_id}, 类型: {alert.type.value})"
            )
        if failed:
            self.logger.warning(f"以下通知器推送失败: {', '.join(failed)} (代理: {alert.target_id})")

        return success_count

    async def drain(self):
        """等待所有正在进行的告警推送完成"""
        if self._delivery_tasks:
            await asyncio.gather(*list(self._delivery_tasks), return_exceptions=True)
