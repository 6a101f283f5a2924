"""健康指标注册表测试"""

from datetime import datetime

from proxy_health.models.health import HealthStatus, ProxyTarget
from proxy_health.services.health_registry import HealthRegistry

NOW = datetime(2024, 1, 1, 12, 0, 0)


def make_targets(*ids):
    return [ProxyTarget(id=target_id, host='127.0.0.1', port=8000 + i)
            for i, target_id in enumerate(ids)]


class TestHealthRegistry:
    """注册表测试类"""

    def setup_method(self):
        self.registry = HealthRegistry(clock=lambda: NOW)

    def test_reconcile_creates_default_metrics(self):
        added, removed = self.registry.reconcile(make_targets('a', 'b'))

        assert added == ['a', 'b']
        assert removed == []
        assert len(self.registry) == 2

        metrics = self.registry.get('a')
        assert metrics.health_score == 100
        assert metrics.status == HealthStatus.HEALTHY
        assert metrics.last_check == NOW

    def test_reconcile_removes_missing_targets(self):
        self.registry.reconcile(make_targets('a', 'b', 'c'))
        added, removed = self.registry.reconcile(make_targets('a', 'c'))

        assert added == []
        assert removed == ['b']
        assert 'b' not in self.registry
        assert self.registry.get('b') is None
        assert self.registry.get_target('b') is None
        assert self.registry.target_ids() == ['a', 'c']

    def test_reconcile_keeps_existing_metrics(self):
        self.registry.reconcile(make_targets('a'))
        self.registry.apply('a', lambda m: setattr(m, 'total_requests', 7))

        self.registry.reconcile([ProxyTarget(id='a', host='10.0.0.9', port=3128)])

        assert self.registry.get('a').total_requests == 7
        assert self.registry.get_target('a').host == '10.0.0.9'

    def test_get_returns_copy(self):
        self.registry.reconcile(make_targets('a'))

        copy = self.registry.get('a')
        copy.health_score = 0

        assert self.registry.get('a').health_score == 100

    def test_get_all_returns_copies(self):
        self.registry.reconcile(make_targets('a', 'b'))

        for metrics in self.registry.get_all():
            metrics.consecutive_failures = 99

        assert all(m.consecutive_failures == 0 for m in self.registry.get_all())

    def test_apply_unknown_target_is_noop(self):
        called = []
        result = self.registry.apply('missing', lambda m: called.append(m))

        assert result is None
        assert called == []

    def test_apply_returns_mutation_result(self):
        self.registry.reconcile(make_targets('a'))
        assert self.registry.apply('a', lambda m: m.target_id) == 'a'

    def test_empty_reconcile_clears_registry(self):
        self.registry.reconcile(make_targets('a', 'b'))
        _, removed = self.registry.reconcile([])

        assert sorted(removed) == ['a', 'b']
        assert len(self.registry) == 0
