"""测试调度器模块

负责按固定间隔把所有代理放入测试队列，并分批并发探测、应用结果
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set

from .health_registry import HealthRegistry
from .scoring import apply_probe_result
from ..alerts.manager import AlertManager
from ..models.health import HealthMetrics, MonitoringConfig, ProbeResult, ProxyTarget
from ..probers.base import BaseProber, TIMEOUT_ERROR_MESSAGE

ResultCallback = Callable[[str, ProbeResult, HealthMetrics], Any]
PassCallback = Callable[["PassReport"], None]


@dataclass
class PassReport:
    """一次队列排空（测试轮次）的执行摘要"""
    started_at: datetime
    batch_sizes: List[int] = field(default_factory=list)
    probed: int = 0
    aborted: bool = False
    stopped: bool = False
    remaining: int = 0
    duration: float = 0.0  # 秒

    def to_dict(self) -> Dict[str, Any]:
        return {
            'started_at': self.started_at.isoformat(),
            'batches': len(self.batch_sizes),
            'batch_sizes': list(self.batch_sizes),
            'probed': self.probed,
            'aborted': self.aborted,
            'stopped': self.stopped,
            'remaining': self.remaining,
            'duration': round(self.duration, 3)
        }


class TestScheduler:
    """测试调度器

    状态: idle -> running -> idle。运行期间由一个定时任务每隔 check_interval
    执行一轮测试；每轮把所有代理入队，再按 batch_size 分批排空队列。
    同一批内的探测并发执行，整批结果全部应用后才开始下一批。
    """

    __test__ = False  # 类名以 Test 开头，避免被 pytest 当作测试类收集

    def __init__(self, registry: HealthRegistry, prober: BaseProber,
                 alert_manager: AlertManager,
                 config: Optional[MonitoringConfig] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """初始化测试调度器

        Args:
            registry: 健康指标注册表
            prober: 代理探测器
            alert_manager: 告警管理器
            config: 监控配置
            clock: 当前时间函数
        """
        self.registry = registry
        self.prober = prober
        self.alert_manager = alert_manager
        self.config = config or MonitoringConfig()
        self._clock = clock
        self.logger = logging.getLogger(__name__)

        self.is_running = False
        self._queue: Deque[str] = deque()
        self._in_flight: Set[str] = set()
        self._processing = False
        self._stop_requested = False
        self._timer_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._idle_event: Optional[asyncio.Event] = None

        self.pass_count = 0
        self.last_pass: Optional[PassReport] = None
        self._result_callbacks: List[ResultCallback] = []
        self._pass_callbacks: List[PassCallback] = []

    def update_config(self, config: MonitoringConfig):
        """替换监控配置，新的间隔和批大小从下一次使用时生效"""
        self.config = config

    def add_result_callback(self, callback: ResultCallback):
        """添加探测结果回调，参数为 (代理ID, 探测结果, 更新后的指标)，可以是协程函数"""
        self._result_callbacks.append(callback)

    def add_pass_callback(self, callback: PassCallback):
        """添加轮次完成回调，每次队列排空结束后以执行摘要调用"""
        self._pass_callbacks.append(callback)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> frozenset:
        return frozenset(self._in_flight)

    def _ensure_events(self):
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        if self._idle_event is None:
            self._idle_event = asyncio.Event()
            self._idle_event.set()

    async def start(self):
        """启动调度器：立即执行一轮测试，然后按 check_interval 定时执行"""
        if self.is_running:
            self.logger.warning("测试调度器已经在运行")
            return

        if not self.config.monitoring_enabled:
            self.logger.info("监控已禁用 (monitoring_enabled=false)，不启动测试调度器")
            return

        self._ensure_events()
        self.is_running = True
        self._stop_requested = False
        self._stop_event.clear()

        self.logger.info(
            f"启动测试调度器，检查间隔: {self.config.check_interval}ms，"
            f"批大小: {self.config.batch_size}"
        )

        await self._run_pass_safely()

        # 首轮测试期间可能已经调用了 stop()
        if self._stop_requested:
            return

        self._timer_task = asyncio.create_task(self._timer_loop())

    async def stop(self):
        """停止调度器

        取消定时器，已经发出的批次允许执行完并应用结果，之后不再开始新的批次。
        """
        if not self.is_running:
            return

        self.logger.info("正在停止测试调度器...")
        self.is_running = False
        self._stop_requested = True
        self._stop_event.set()

        current = asyncio.current_task()
        timer_task, self._timer_task = self._timer_task, None
        if timer_task is not None and timer_task is not current:
            await asyncio.gather(timer_task, return_exceptions=True)

        if self._processing and self._drain_task is not current:
            await self._idle_event.wait()

        self.logger.info(f"测试调度器已停止，队列中剩余 {len(self._queue)} 个待测代理")

    async def restart(self):
        """重启调度器"""
        await self.stop()
        await self.start()

    async def _timer_loop(self):
        while not self._stop_requested:
            try:
                await asyncio.wait_for(self._stop_event.wait(),
                                       timeout=self.config.check_interval / 1000)
                break
            except asyncio.TimeoutError:
                await self._run_pass_safely()

    async def _run_pass_safely(self):
        # 调度本身出错时只记录日志，定时器继续运行
        try:
            await self.run_pass()
        except Exception as e:
            self.logger.error(f"执行测试轮次时发生异常: {e}", exc_info=True)

    def enqueue(self, target_ids: Iterable[str]) -> int:
        """把代理ID加入测试队列（允许重复）

        Returns:
            int: 入队数量
        """
        count = 0
        for target_id in target_ids:
            self._queue.append(target_id)
            count += 1
        return count

    def _enqueue_registered(self) -> int:
        # 上一轮因过载留在队列中的代理不重复入队
        pending = set(self._queue)
        return self.enqueue(
            target_id for target_id in self.registry.target_ids()
            if target_id not in pending
        )

    async def run_pass(self) -> Optional[PassReport]:
        """执行一轮测试：所有代理入队后排空队列

        Returns:
            本轮的执行摘要；已有排空过程在进行时只入队，返回None
        """
        self._enqueue_registered()
        return await self._drain_if_idle()

    async def queue_tests(self, target_ids: Iterable[str]) -> Optional[PassReport]:
        """把指定代理加入队列并排空队列

        Returns:
            执行摘要；已有排空过程在进行时只入队，返回None
        """
        self.enqueue(target_ids)
        return await self._drain_if_idle()

    async def _drain_if_idle(self) -> Optional[PassReport]:
        if self._processing:
            self.logger.debug(f"队列正在处理中，当前待测 {len(self._queue)} 个")
            return None

        if not self.is_running:
            # 调度器未运行时的手动执行不受之前 stop() 的影响
            self._stop_requested = False
            self._ensure_events()
            self._stop_event.clear()

        return await self._drain()

    def _next_chunk(self) -> List[str]:
        """取出下一批代理ID，同一批内不会出现重复ID"""
        chunk: List[str] = []
        deferred: List[str] = []

        while self._queue and len(chunk) < self.config.batch_size:
            target_id = self._queue.popleft()
            if target_id in chunk:
                deferred.append(target_id)
            else:
                chunk.append(target_id)

        self._queue.extendleft(reversed(deferred))
        return chunk

    async def _drain(self) -> PassReport:
        self._ensure_events()
        self._processing = True
        self._drain_task = asyncio.current_task()
        self._idle_event.clear()

        report = PassReport(started_at=self._clock())
        start_time = time.monotonic()

        try:
            while self._queue:
                if self._stop_requested:
                    report.stopped = True
                    break

                if len(report.batch_sizes) >= self.config.max_batches_per_pass:
                    report.aborted = True
                    self.logger.warning(
                        f"本轮已处理 {len(report.batch_sizes)} 批，达到上限 "
                        f"{self.config.max_batches_per_pass}，中止本轮，"
                        f"剩余 {len(self._queue)} 个代理留待下一轮"
                    )
                    break

                if report.batch_sizes and self.config.batch_delay > 0:
                    await self._pause(self.config.batch_delay)
                    if self._stop_requested:
                        report.stopped = True
                        break

                chunk = self._next_chunk()
                report.probed += await self._process_chunk(chunk)
                report.batch_sizes.append(len(chunk))

        finally:
            report.remaining = len(self._queue)
            report.duration = time.monotonic() - start_time
            self.last_pass = report
            self.pass_count += 1
            self._processing = False
            self._drain_task = None
            self._idle_event.set()

        if report.stopped:
            self.logger.info(f"收到停止请求，本轮提前结束，剩余 {report.remaining} 个代理未测试")

        self.logger.info(
            f"测试轮次完成: {len(report.batch_sizes)} 批, 探测 {report.probed} 个代理, "
            f"耗时 {report.duration:.3f}s"
        )

        for callback in self._pass_callbacks:
            try:
                callback(report)
            except Exception as e:
                self.logger.error(f"轮次完成回调执行失败: {e}")

        return report

    async def _pause(self, delay_ms: float):
        # stop() 会提前结束批次间的等待
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _process_chunk(self, chunk: List[str]) -> int:
        """并发探测一批代理并依次应用结果

        Returns:
            int: 实际探测的代理数量
        """
        targets: List[ProxyTarget] = []
        for target_id in chunk:
            target = self.registry.get_target(target_id)
            if target is None:
                self.logger.debug(f"代理 {target_id} 已被移除，跳过测试")
                continue
            targets.append(target)

        if not targets:
            return 0

        target_ids = [target.id for target in targets]
        self._in_flight.update(target_ids)
        try:
            results = await asyncio.gather(*(self._probe(target) for target in targets))
        finally:
            self._in_flight.difference_update(target_ids)

        for target, result in zip(targets, results):
            await self._apply_result(target, result)

        return len(targets)

    async def _probe(self, target: ProxyTarget) -> ProbeResult:
        """调用探测器，超时或异常都转换为失败结果"""
        timeout_ms = self.config.test_timeout
        start_time = time.monotonic()

        try:
            return await asyncio.wait_for(self.prober.test(target, timeout_ms),
                                          timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return ProbeResult(False, (time.monotonic() - start_time) * 1000,
                               TIMEOUT_ERROR_MESSAGE)
        except Exception as e:
            self.logger.error(f"探测代理 {target.id} 时探测器抛出异常: {e}")
            return ProbeResult(False, (time.monotonic() - start_time) * 1000,
                               str(e) or type(e).__name__)

    async def _apply_result(self, target: ProxyTarget, result: ProbeResult):
        now = self._clock()
        config = self.config

        transition = self.registry.apply(
            target.id, lambda metrics: apply_probe_result(metrics, result, config, now))
        if transition is None:
            return

        metrics = self.registry.get(target.id)
        old_status, new_status = transition

        if old_status != new_status:
            self.logger.info(
                f"代理 {target.label} 状态变化: {old_status.value} -> {new_status.value} "
                f"(健康分: {metrics.health_score})"
            )
            self.alert_manager.on_transition(target.id, old_status, new_status,
                                             metrics, target.label)

        if not result.success:
            self.logger.debug(f"代理 {target.label} 探测失败: {result.error}")
            self.alert_manager.on_failure_streak(target.id, metrics, target.label)

        for callback in self._result_callbacks:
            try:
                outcome = callback(target.id, result, metrics)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                self.logger.error(f"探测结果回调执行失败: {e}")

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        return {
            'is_running': self.is_running,
            'is_processing': self._processing,
            'pending': len(self._queue),
            'in_flight': len(self._in_flight),
            'pass_count': self.pass_count,
            'check_interval': self.config.check_interval,
            'batch_size': self.config.batch_size,
            'last_pass': self.last_pass.to_dict() if self.last_pass else None
        }
