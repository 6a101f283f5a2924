"""健康评分模块

根据探测结果更新代理指标、计算综合健康分并划分健康状态。
本模块中的函数都是纯函数（apply_probe_result 只修改传入的指标对象），
不做任何IO，也不持有状态。
"""

import math
from datetime import datetime
from typing import Tuple

from ..models.health import HealthMetrics, HealthStatus, MonitoringConfig, ProbeResult

# 评分权重
SUCCESS_RATE_WEIGHT = 0.4
RESPONSE_TIME_WEIGHT = 0.3
UPTIME_WEIGHT = 0.2
CONSECUTIVE_FAILURES_WEIGHT = 0.1

# 平均响应时间达到该值（毫秒）时响应分为0
MAX_ACCEPTABLE_RESPONSE_TIME = 5000
# 每次连续失败扣除的分数
FAILURE_PENALTY = 20

UPTIME_GAIN_ON_SUCCESS = 0.1
UPTIME_LOSS_ON_FAILURE = 1.0


def _clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    """四舍五入，0.5 总是向上取整（与内置 round 的银行家舍入不同）"""
    return int(math.floor(value + 0.5))


def compute_health_score(metrics: HealthMetrics) -> int:
    """计算 0-100 的综合健康分

    Args:
        metrics: 健康指标

    Returns:
        int: 四舍五入（0.5向上取整）后的健康分
    """
    success_score = metrics.success_rate
    response_score = max(
        0.0, 100 - (metrics.average_response_time / MAX_ACCEPTABLE_RESPONSE_TIME) * 100)
    uptime_score = metrics.uptime
    failures_score = max(0.0, 100 - metrics.consecutive_failures * FAILURE_PENALTY)

    total = (
        success_score * SUCCESS_RATE_WEIGHT
        + response_score * RESPONSE_TIME_WEIGHT
        + uptime_score * UPTIME_WEIGHT
        + failures_score * CONSECUTIVE_FAILURES_WEIGHT
    )

    return int(_clamp(round_half_up(total)))


def classify_status(score: float, config: MonitoringConfig) -> HealthStatus:
    """根据健康分和阈值划分健康状态，按顺序第一个满足的条件生效"""
    if score >= config.health_threshold:
        return HealthStatus.HEALTHY
    if score >= config.warning_threshold:
        return HealthStatus.WARNING
    if score >= config.critical_threshold:
        return HealthStatus.CRITICAL
    return HealthStatus.OFFLINE


def apply_probe_result(metrics: HealthMetrics, result: ProbeResult,
                       config: MonitoringConfig,
                       now: datetime) -> Tuple[HealthStatus, HealthStatus]:
    """将一次探测结果应用到指标上，并重新计算健康分和状态

    Args:
        metrics: 要更新的指标（原地修改）
        result: 探测结果
        config: 当前监控配置
        now: 本次结果的应用时间

    Returns:
        (旧状态, 新状态)
    """
    old_status = metrics.status
    previous_total = metrics.total_requests

    metrics.total_requests = previous_total + 1
    if result.success:
        metrics.successful_requests += 1
    metrics.success_rate = metrics.successful_requests / metrics.total_requests * 100

    if previous_total == 0:
        metrics.average_response_time = result.response_time
    else:
        metrics.average_response_time = (
            metrics.average_response_time * previous_total + result.response_time
        ) / metrics.total_requests
    metrics.response_time = result.response_time

    if result.success:
        metrics.consecutive_failures = 0
        metrics.uptime = _clamp(metrics.uptime + UPTIME_GAIN_ON_SUCCESS)
    else:
        metrics.consecutive_failures += 1
        metrics.uptime = _clamp(metrics.uptime - UPTIME_LOSS_ON_FAILURE)

    metrics.last_check = now
    metrics.last_error = result.error

    metrics.health_score = compute_health_score(metrics)
    metrics.status = classify_status(metrics.health_score, config)

    return old_status, metrics.status


def reclassify(metrics: HealthMetrics, config: MonitoringConfig) -> Tuple[HealthStatus, HealthStatus]:
    """阈值变化后按现有健康分重新划分状态，不修改其他指标"""
    old_status = metrics.status
    metrics.status = classify_status(metrics.health_score, config)
    return old_status, metrics.status
