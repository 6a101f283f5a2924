"""健康评分测试"""

import pytest
from datetime import datetime

from proxy_health.models.health import HealthMetrics, HealthStatus, MonitoringConfig, ProbeResult
from proxy_health.services.scoring import (
    apply_probe_result,
    classify_status,
    compute_health_score,
    reclassify,
    round_half_up,
)

NOW = datetime(2024, 1, 1, 12, 0, 0)


class TestComputeHealthScore:
    """综合健康分计算测试"""

    def test_perfect_metrics(self):
        assert compute_health_score(HealthMetrics(target_id='p1')) == 100

    def test_worst_metrics(self):
        metrics = HealthMetrics(
            target_id='p1',
            success_rate=0,
            average_response_time=20000,
            uptime=0,
            consecutive_failures=10
        )
        assert compute_health_score(metrics) == 0

    def test_weighted_components(self):
        # 40 + 0.3 * 50 + 0.2 * 90 + 0.1 * 60 = 79
        metrics = HealthMetrics(
            target_id='p1',
            success_rate=100,
            average_response_time=2500,
            uptime=90,
            consecutive_failures=2
        )
        assert compute_health_score(metrics) == 79

    def test_round_half_up(self):
        assert round_half_up(90.5) == 91
        assert round_half_up(91.5) == 92
        assert round_half_up(90.49) == 90
        assert round_half_up(0) == 0

    def test_half_rounds_up(self):
        # 0.4 * 50 + 0.3 * 100 + 0.2 * 92.5 + 0.1 * 100 = 78.5
        metrics = HealthMetrics(target_id='p1', success_rate=50, uptime=92.5)
        assert compute_health_score(metrics) == 79

    @pytest.mark.parametrize('response_time', [0, 100, 4999, 5000, 60000])
    def test_score_within_bounds(self, response_time):
        metrics = HealthMetrics(target_id='p1', average_response_time=response_time)
        score = compute_health_score(metrics)
        assert 0 <= score <= 100
        assert isinstance(score, int)


class TestClassifyStatus:
    """健康状态划分测试"""

    def setup_method(self):
        self.config = MonitoringConfig()

    @pytest.mark.parametrize('score, expected', [
        (85, HealthStatus.HEALTHY),
        (80, HealthStatus.HEALTHY),
        (70, HealthStatus.WARNING),
        (60, HealthStatus.WARNING),
        (40, HealthStatus.CRITICAL),
        (30, HealthStatus.CRITICAL),
        (10, HealthStatus.OFFLINE),
        (0, HealthStatus.OFFLINE),
    ])
    def test_default_thresholds(self, score, expected):
        assert classify_status(score, self.config) == expected

    def test_custom_thresholds(self):
        config = self.config.merge({'health_threshold': 90, 'warning_threshold': 75,
                                    'critical_threshold': 50})
        assert classify_status(85, config) == HealthStatus.WARNING
        assert classify_status(49, config) == HealthStatus.OFFLINE


class TestApplyProbeResult:
    """探测结果应用测试"""

    def setup_method(self):
        self.config = MonitoringConfig()
        self.metrics = HealthMetrics(target_id='p1')

    def test_success_rate_is_unrounded(self):
        for success in (True, True, False):
            apply_probe_result(self.metrics, ProbeResult(success, 100), self.config, NOW)

        assert self.metrics.total_requests == 3
        assert self.metrics.successful_requests == 2
        assert self.metrics.success_rate == pytest.approx(200 / 3)

    def test_consecutive_failures_reset_on_success(self):
        for _ in range(3):
            apply_probe_result(self.metrics, ProbeResult(False, 100, 'boom'), self.config, NOW)
        assert self.metrics.consecutive_failures == 3

        apply_probe_result(self.metrics, ProbeResult(True, 100), self.config, NOW)
        assert self.metrics.consecutive_failures == 0
        assert self.metrics.last_error is None

    def test_running_average_response_time(self):
        for response_time in (100, 200, 600):
            apply_probe_result(self.metrics, ProbeResult(True, response_time), self.config, NOW)

        assert self.metrics.response_time == 600
        assert self.metrics.average_response_time == pytest.approx(300)

    def test_uptime_gauge(self):
        apply_probe_result(self.metrics, ProbeResult(False, 100, 'x'), self.config, NOW)
        assert self.metrics.uptime == pytest.approx(99)

        apply_probe_result(self.metrics, ProbeResult(True, 100), self.config, NOW)
        assert self.metrics.uptime == pytest.approx(99.1)

    def test_uptime_clamped_at_100(self):
        apply_probe_result(self.metrics, ProbeResult(True, 100), self.config, NOW)
        assert self.metrics.uptime == 100

    def test_fast_success_is_healthy(self):
        old_status, new_status = apply_probe_result(
            self.metrics, ProbeResult(True, 100), self.config, NOW)

        assert old_status == HealthStatus.HEALTHY
        assert new_status == HealthStatus.HEALTHY
        assert self.metrics.health_score == 99
        assert self.metrics.last_check == NOW

    def test_timeout_failure_goes_offline(self):
        # 0 + 0 + 0.2 * 99 + 0.1 * 80 = 27.8
        old_status, new_status = apply_probe_result(
            self.metrics, ProbeResult(False, 10000, 'Timeout'), self.config, NOW)

        assert self.metrics.health_score == 28
        assert old_status == HealthStatus.HEALTHY
        assert new_status == HealthStatus.OFFLINE
        assert self.metrics.last_error == 'Timeout'

    def test_counters_are_monotonic(self):
        results = [True, False, True, False, False]
        for i, success in enumerate(results):
            apply_probe_result(self.metrics, ProbeResult(success, 50), self.config, NOW)
            assert self.metrics.total_requests == i + 1
            assert self.metrics.successful_requests <= self.metrics.total_requests


class TestReclassify:
    """阈值变化后的重新划分测试"""

    def test_reclassify_uses_existing_score(self):
        metrics = HealthMetrics(target_id='p1', health_score=75, status=HealthStatus.WARNING)
        config = MonitoringConfig().merge({'health_threshold': 70, 'warning_threshold': 50})

        old_status, new_status = reclassify(metrics, config)

        assert old_status == HealthStatus.WARNING
        assert new_status == HealthStatus.HEALTHY
        assert metrics.health_score == 75
