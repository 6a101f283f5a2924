"""测试调度器测试模块"""

import asyncio
import pytest
from unittest.mock import AsyncMock, Mock

from proxy_health.alerts.manager import AlertManager
from proxy_health.models.health import MonitoringConfig, ProbeResult, ProxyTarget
from proxy_health.probers.base import BaseProber
from proxy_health.services.health_registry import HealthRegistry
from proxy_health.services.scheduler import TestScheduler


class FakeProber(BaseProber):
    """模拟探测器，记录调用顺序和最大并发数"""

    def __init__(self, outcomes=None, response_time=100):
        super().__init__({})
        self.outcomes = outcomes or {}
        self.response_time = response_time
        self.calls = []
        self.gate = None
        self.active = 0
        self.max_active = 0

    async def probe(self, target):
        pass

    async def test(self, target, timeout_ms):
        self.calls.append(target.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0)

            outcome = self.outcomes.get(target.id, True)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome:
                return ProbeResult(True, self.response_time)
            return ProbeResult(False, 10000, 'Timeout')
        finally:
            self.active -= 1


class SlowProber(BaseProber):
    """从不按时返回的探测器"""

    async def probe(self, target):
        pass

    async def test(self, target, timeout_ms):
        await asyncio.sleep(10)
        return ProbeResult(True, 1)


def make_targets(count):
    return [ProxyTarget(id=f'p{i}', host='127.0.0.1', port=9000 + i) for i in range(count)]


def make_scheduler(prober, count=0, **config_overrides):
    config = MonitoringConfig(**{'batch_delay': 0, **config_overrides})
    registry = HealthRegistry()
    registry.reconcile(make_targets(count))
    alert_manager = AlertManager(config)
    scheduler = TestScheduler(registry, prober, alert_manager, config)
    return scheduler, registry, alert_manager


class TestPassExecution:
    """测试轮次执行测试"""

    @pytest.mark.asyncio
    async def test_batches_follow_batch_size(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 23, batch_size=5)

        report = await scheduler.run_pass()

        assert report.batch_sizes == [5, 5, 5, 5, 3]
        assert report.probed == 23
        assert report.aborted is False
        assert report.remaining == 0
        assert prober.max_active <= 5
        assert prober.calls == [f'p{i}' for i in range(23)]
        assert all(m.total_requests == 1 for m in registry.get_all())

    @pytest.mark.asyncio
    async def test_empty_registry(self):
        scheduler, _, _ = make_scheduler(FakeProber())

        report = await scheduler.run_pass()

        assert report.batch_sizes == []
        assert report.probed == 0
        assert scheduler.pass_count == 1

    @pytest.mark.asyncio
    async def test_chunk_applied_before_next_chunk_starts(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 4, batch_size=2)
        seen = []

        original_test = prober.test

        async def recording_test(target, timeout_ms):
            seen.append((target.id, registry.get('p0').total_requests))
            return await original_test(target, timeout_ms)

        prober.test = recording_test
        await scheduler.run_pass()

        assert dict(seen)['p0'] == 0
        assert dict(seen)['p2'] == 1
        assert dict(seen)['p3'] == 1

    @pytest.mark.asyncio
    async def test_batch_delay_between_chunks(self):
        prober = FakeProber()
        scheduler, _, _ = make_scheduler(prober, 3, batch_size=1, batch_delay=20)

        report = await scheduler.run_pass()

        assert report.batch_sizes == [1, 1, 1]
        assert report.duration >= 0.03

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_deferred(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 2, batch_size=5)

        report = await scheduler.queue_tests(['p0', 'p0', 'p1', 'p0'])

        assert report.batch_sizes == [2, 1, 1]
        assert registry.get('p0').total_requests == 3
        assert registry.get('p1').total_requests == 1
        assert prober.max_active <= 2

    @pytest.mark.asyncio
    async def test_run_pass_does_not_duplicate_pending_ids(self):
        scheduler, registry, _ = make_scheduler(FakeProber(), 3)
        scheduler.enqueue(['p1'])

        report = await scheduler.run_pass()

        assert report.probed == 3
        assert registry.get('p1').total_requests == 1

    @pytest.mark.asyncio
    async def test_removed_target_is_skipped(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 2)

        report = await scheduler.queue_tests(['p0', 'ghost', 'p1'])

        assert report.probed == 2
        assert 'ghost' not in prober.calls
        assert 'ghost' not in registry


class TestProbeFailures:
    """探测失败处理测试"""

    @pytest.mark.asyncio
    async def test_prober_exception_becomes_failure(self):
        prober = FakeProber(outcomes={'p0': RuntimeError('连接被拒绝')})
        scheduler, registry, _ = make_scheduler(prober, 2)

        report = await scheduler.run_pass()

        assert report.probed == 2
        failed = registry.get('p0')
        assert failed.consecutive_failures == 1
        assert failed.last_error == '连接被拒绝'
        assert registry.get('p1').consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_hanging_prober_times_out(self):
        scheduler, registry, _ = make_scheduler(SlowProber(), 1, test_timeout=50)

        await scheduler.run_pass()

        metrics = registry.get('p0')
        assert metrics.total_requests == 1
        assert metrics.consecutive_failures == 1
        assert metrics.last_error == 'Timeout'

    @pytest.mark.asyncio
    async def test_failures_trigger_alerts(self):
        prober = FakeProber(outcomes={'p0': False})
        scheduler, registry, alert_manager = make_scheduler(prober, 3)
        failover = Mock()
        alert_manager.add_failover_callback(failover)

        for _ in range(3):
            await scheduler.run_pass()

        alerts = alert_manager.get_alerts()
        assert len(alerts) == 1
        assert alerts[0].target_id == 'p0'
        assert alerts[0].severity.value == 'critical'
        assert registry.get('p0').consecutive_failures == 3
        assert failover.call_count == 1


class TestOverloadGuard:
    """过载保护测试"""

    @pytest.mark.asyncio
    async def test_pass_aborted_at_batch_limit(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 23, batch_size=5,
                                                max_batches_per_pass=2)

        report = await scheduler.run_pass()

        assert report.aborted is True
        assert report.batch_sizes == [5, 5]
        assert report.remaining == 13
        assert scheduler.pending_count == 13
        assert registry.get('p9').total_requests == 1
        assert registry.get('p10').total_requests == 0

    @pytest.mark.asyncio
    async def test_remaining_ids_processed_next_pass(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 23, batch_size=5,
                                                max_batches_per_pass=2)

        await scheduler.run_pass()
        await scheduler.run_pass()

        assert registry.get('p10').total_requests == 1
        assert registry.get('p19').total_requests == 1
        assert registry.get('p0').total_requests == 1
        assert scheduler.pending_count == 13


class TestLifecycle:
    """启动与停止测试"""

    @pytest.mark.asyncio
    async def test_start_runs_first_pass_immediately(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 3)

        await scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler.pass_count == 1
            assert all(m.total_requests == 1 for m in registry.get_all())
        finally:
            await scheduler.stop()

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_start_is_noop_when_monitoring_disabled(self):
        prober = FakeProber()
        scheduler, _, _ = make_scheduler(prober, 3, monitoring_enabled=False)

        await scheduler.start()

        assert not scheduler.is_running
        assert prober.calls == []

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self):
        prober = FakeProber()
        scheduler, _, _ = make_scheduler(prober, 1)

        await scheduler.start()
        await scheduler.start()
        try:
            assert scheduler.pass_count == 1
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_timer_runs_passes_periodically(self):
        scheduler, _, _ = make_scheduler(FakeProber(), 2, check_interval=30)

        await scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

        assert scheduler.pass_count >= 3

    @pytest.mark.asyncio
    async def test_no_updates_after_stop(self):
        prober = FakeProber()
        scheduler, registry, _ = make_scheduler(prober, 3, check_interval=30)

        await scheduler.start()
        await scheduler.stop()
        snapshot = {m.target_id: m.total_requests for m in registry.get_all()}

        await asyncio.sleep(0.1)

        assert {m.target_id: m.total_requests for m in registry.get_all()} == snapshot

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_chunk_finish(self):
        prober = FakeProber()
        prober.gate = asyncio.Event()
        scheduler, registry, _ = make_scheduler(prober, 10, batch_size=5)

        start_task = asyncio.create_task(scheduler.start())
        while len(prober.calls) < 5:
            await asyncio.sleep(0)

        stop_task = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0)
        prober.gate.set()
        await stop_task
        await start_task

        probed = [m.target_id for m in registry.get_all() if m.total_requests == 1]
        assert probed == ['p0', 'p1', 'p2', 'p3', 'p4']
        assert len(prober.calls) == 5
        assert scheduler.last_pass.stopped is True
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_restart(self):
        scheduler, registry, _ = make_scheduler(FakeProber(), 2)

        await scheduler.start()
        await scheduler.restart()
        try:
            assert scheduler.is_running
            assert registry.get('p0').total_requests == 2
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_manual_pass_after_stop(self):
        scheduler, registry, _ = make_scheduler(FakeProber(), 1)

        await scheduler.start()
        await scheduler.stop()
        report = await scheduler.run_pass()

        assert report.probed == 1
        assert registry.get('p0').total_requests == 2

    @pytest.mark.asyncio
    async def test_batch_delay_kept_for_manual_pass_after_stop(self):
        scheduler, _, _ = make_scheduler(FakeProber(), 3, batch_size=1, batch_delay=50)

        await scheduler.start()
        await scheduler.stop()
        report = await scheduler.run_pass()

        assert report.batch_sizes == [1, 1, 1]
        assert report.stopped is False
        # 三批之间有两次 50ms 的间隔
        assert report.duration >= 0.08

    @pytest.mark.asyncio
    async def test_run_pass_while_draining_only_enqueues(self):
        prober = FakeProber()
        prober.gate = asyncio.Event()
        scheduler, _, _ = make_scheduler(prober, 2)

        first = asyncio.create_task(scheduler.run_pass())
        while not prober.calls:
            await asyncio.sleep(0)

        assert await scheduler.queue_tests(['p0']) is None

        prober.gate.set()
        report = await first

        assert report.batch_sizes == [2, 1]
        assert prober.calls.count('p0') == 2


class TestCallbacks:
    """回调测试"""

    @pytest.mark.asyncio
    async def test_result_callbacks(self):
        scheduler, _, _ = make_scheduler(FakeProber(), 2)
        sync_callback = Mock()
        async_callback = AsyncMock()
        scheduler.add_result_callback(sync_callback)
        scheduler.add_result_callback(async_callback)

        await scheduler.run_pass()

        assert sync_callback.call_count == 2
        assert async_callback.await_count == 2
        target_id, result, metrics = sync_callback.call_args_list[0].args
        assert target_id == 'p0'
        assert result.success is True
        assert metrics.total_requests == 1

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_pass(self):
        scheduler, registry, _ = make_scheduler(FakeProber(), 2)
        scheduler.add_result_callback(Mock(side_effect=RuntimeError('boom')))

        report = await scheduler.run_pass()

        assert report.probed == 2

    @pytest.mark.asyncio
    async def test_pass_callback_receives_report(self):
        scheduler, _, _ = make_scheduler(FakeProber(), 2)
        reports = []
        scheduler.add_pass_callback(reports.append)

        report = await scheduler.run_pass()

        assert reports == [report]

    def test_scheduler_stats(self):
        scheduler, _, _ = make_scheduler(FakeProber(), 2)
        stats = scheduler.get_scheduler_stats()

        assert stats['is_running'] is False
        assert stats['pending'] == 0
        assert stats['last_pass'] is None
