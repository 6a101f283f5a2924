#!/usr/bin/env python3
"""
代理健康监控主应用程序入口

加载配置并组装监控器，处理配置热更新、信号和优雅关闭。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import threading
from typing import Any, Dict, List, Optional

from proxy_health import __version__
from proxy_health.alerts.base import BaseNotifier
from proxy_health.alerts.http_notifier import HttpNotifier
from proxy_health.models.health import HealthMetrics, HealthStatus, MonitoringConfig
from proxy_health.probers import RoutingProber
from proxy_health.services.config_manager import ConfigManager
from proxy_health.services.config_watcher import ConfigWatcher
from proxy_health.services.health_monitor import DEFAULT_ALERT_RETENTION, ProxyHealthMonitor
from proxy_health.utils.exceptions import AlertError, ConfigError, ProxyHealthError
from proxy_health.utils.log_manager import LOGGER_NAMESPACE, get_logger, log_manager


class ProxyHealthApp:
    """代理健康监控主应用程序类"""

    def __init__(self, config_path: str, log_level: Optional[str] = None,
                 log_file: Optional[str] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_level: 覆盖配置文件中的日志级别
            log_file: 覆盖配置文件中的日志文件
        """
        self.config_path = config_path
        self.log_overrides = {'log_level': log_level, 'log_file': log_file}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()
        self.loop: Optional[asyncio.AbstractEventLoop] = None

        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.monitor: Optional[ProxyHealthMonitor] = None

        self.background_tasks = set()

    async def initialize(self):
        """初始化应用程序组件

        Raises:
            ConfigError: 配置无效
        """
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()

            self._configure_logging(self.config_manager.get_global_config())
            self.logger = get_logger('main')
            self.logger.info("开始初始化代理健康监控系统")

            global_config = self.config_manager.get_global_config()
            prober = RoutingProber(self.config_manager.get_prober_config())
            self.monitor = ProxyHealthMonitor(
                prober,
                self.config_manager.get_monitoring_config(),
                alert_retention=global_config.get('alert_retention', DEFAULT_ALERT_RETENTION)
            )
            self.monitor.set_targets(self.config_manager.get_targets())
            self.monitor.add_failover_callback(self._on_failover)

            for notifier in self._create_notifiers(self.config_manager.get_alerts_config()):
                self.monitor.add_notifier(notifier)

            self.config_watcher = ConfigWatcher(self.config_manager)
            self.config_watcher.add_change_callback(self._on_config_changed_callback)

            self.logger.info("应用程序组件初始化完成")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统，命令行参数优先于配置文件"""
        global_config = {**global_config,
                         **{k: v for k, v in self.log_overrides.items() if v}}

        log_config = {
            'log_level': global_config.get('log_level', 'INFO'),
            'enable_console': True,
            'enable_file': 'log_file' in global_config
        }
        if 'log_file' in global_config:
            log_config['log_file'] = global_config['log_file']
            log_config['max_file_size'] = global_config.get('max_log_size', 10 * 1024 * 1024)
            log_config['backup_count'] = global_config.get('log_backup_count', 5)

        log_manager.configure(log_config)
        # 包内按模块名创建的记录器都会传播到这里
        log_manager.get_logger(LOGGER_NAMESPACE)

    def _create_notifiers(self, alerts_config: List[Dict[str, Any]]) -> List[BaseNotifier]:
        """根据告警配置创建通知器，无效的配置记录错误后跳过"""
        notifiers = []
        for alert_config in alerts_config:
            name = alert_config.get('name', 'unnamed')
            try:
                notifiers.append(HttpNotifier(name, alert_config))
            except AlertError as e:
                self.logger.error(f"创建通知器 {name} 失败: {e}")
        return notifiers

    def _on_failover(self, target_id: str, metrics: HealthMetrics):
        self.logger.warning(
            f"代理 {target_id} 需要切换到备用代理 "
            f"(连续失败 {metrics.consecutive_failures} 次, 最近错误: {metrics.last_error})"
        )

    def _on_config_changed_callback(self, old_config: Dict[str, Any],
                                    new_config: Dict[str, Any]):
        """配置文件变更回调，在文件监控线程中触发"""
        if self.loop is not None and threading.current_thread() is not threading.main_thread():
            self.loop.call_soon_threadsafe(self._apply_config, new_config)
        else:
            self._apply_config(new_config)

    def _apply_config(self, new_config: Dict[str, Any]):
        try:
            self.logger.info("检测到配置文件变更，重新应用配置")

            global_config = new_config.get('global') or {}
            self._configure_logging(global_config)
            self.monitor.alert_retention = global_config.get(
                'alert_retention', DEFAULT_ALERT_RETENTION)

            # 配置文件中未出现的字段恢复默认值
            monitoring = MonitoringConfig().merge(new_config.get('monitoring') or {})
            self.monitor.set_config(monitoring.to_dict())
            self.monitor.set_targets(self.config_manager.get_targets())

            for name in self.monitor.alert_manager.get_notifier_names():
                self.monitor.alert_manager.remove_notifier(name)
            for notifier in self._create_notifiers(new_config.get('alerts') or []):
                self.monitor.add_notifier(notifier)

            if self.monitor.prober.config != self.config_manager.get_prober_config():
                self.logger.warning("prober 配置已修改，重启后生效")

            if self.is_running:
                if not monitoring.monitoring_enabled and self.monitor.is_monitoring:
                    self._spawn(self.monitor.stop())
                elif monitoring.monitoring_enabled and not self.monitor.is_monitoring:
                    self._spawn(self.monitor.start())

            self.logger.info("配置重新加载完成")

        except Exception as e:
            self.logger.error(f"重新加载配置失败: {e}", exc_info=True)

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)
        return task

    async def start(self):
        """启动应用程序，直到收到关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.loop = asyncio.get_running_loop()
            self.is_running = True
            self.logger.info("启动代理健康监控系统")

            self.config_watcher.start_watching()
            self._spawn(self.monitor.start())

            self.logger.info("代理健康监控系统启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止代理健康监控系统...")
        self.is_running = False

        try:
            if self.config_watcher:
                self.config_watcher.stop_watching()

            if self.monitor:
                await self.monitor.close()

            for task in self.background_tasks:
                if not task.done():
                    task.cancel()
            if self.background_tasks:
                await asyncio.gather(*self.background_tasks, return_exceptions=True)
            self.background_tasks.clear()

            self.logger.info("代理健康监控系统已停止")
            log_manager.cleanup()

        except Exception as e:
            self.logger.error(f"停止应用程序时发生异常: {e}", exc_info=True)

    def shutdown(self):
        """触发应用程序关闭，可以在信号处理器中调用"""
        if self.logger:
            self.logger.info("收到关闭信号")
        if self.loop is not None:
            self.loop.call_soon_threadsafe(self.shutdown_event.set)
        else:
            self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态"""
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path,
            'background_tasks_count': len(self.background_tasks)
        }

        if self.monitor:
            status['monitor_stats'] = self.monitor.get_stats()
            status['scheduler_stats'] = self.monitor.scheduler.get_scheduler_stats()
            status['notifiers'] = self.monitor.alert_manager.get_notifier_names()

        if self.config_watcher:
            status['config_watching'] = self.config_watcher.is_running()

        return status


# 全局应用程序实例
app: Optional[ProxyHealthApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='proxy-health-monitor',
        description='代理健康监控 - 定期探测代理可用性，计算健康分并发送告警',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动监控
  %(prog)s --validate config.yaml        # 验证配置文件格式
  %(prog)s --check-once config.yaml      # 执行一轮测试后退出
  %(prog)s --version                      # 显示版本信息

支持的代理类型: http, https, socks4, socks4a, socks5, tcp
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version',
                        version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件格式并退出')
    parser.add_argument('--check-once', action='store_true',
                        help='执行一轮测试并输出每个代理的状态后退出')
    parser.add_argument('--log-level',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='设置日志级别（覆盖配置文件设置）')
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")

    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e.format_error()}")
        return False

    targets = config_manager.get_targets()
    alerts = config_manager.get_alerts_config()
    monitoring = config_manager.get_monitoring_config()

    print("✅ 配置文件验证成功!")
    print(f"   - 代理数量: {len(targets)}")
    print(f"   - 告警通知数量: {len(alerts)}")
    print(f"   - 检查间隔: {monitoring.check_interval}ms, 批大小: {monitoring.batch_size}")

    if targets:
        print("   - 配置的代理:")
        for target in targets:
            print(f"     * {target.id}: {target.label} ({target.proxy_type})")

    if alerts:
        print("   - 配置的告警通知:")
        for alert_config in alerts:
            print(f"     * {alert_config.get('name', 'unnamed')} ({alert_config.get('type')})")

    return True


async def check_once(config_path: str, log_level: Optional[str] = None,
                     log_file: Optional[str] = None) -> bool:
    """执行一轮测试

    Returns:
        所有代理是否都处于健康状态
    """
    print(f"正在执行代理测试: {config_path}")

    once_app = ProxyHealthApp(config_path, log_level=log_level, log_file=log_file)
    try:
        await once_app.initialize()
    except ProxyHealthError as e:
        print(f"❌ 初始化失败: {e}")
        return False

    monitor = once_app.monitor
    try:
        await monitor.run_pass()
        all_metrics = monitor.get_all_metrics()

        print(f"✅ 测试完成，共测试 {len(all_metrics)} 个代理:")

        all_healthy = True
        for metrics in all_metrics:
            target = monitor.registry.get_target(metrics.target_id)
            label = target.label if target else metrics.target_id
            if metrics.status == HealthStatus.HEALTHY:
                print(f"   ✅ {metrics.target_id} ({label}): 健康 "
                      f"(健康分: {metrics.health_score}, 响应时间: {metrics.response_time:.0f}ms)")
            else:
                print(f"   ❌ {metrics.target_id} ({label}): {metrics.status.value} "
                      f"(健康分: {metrics.health_score}) - {metrics.last_error}")
                all_healthy = False

        return all_healthy

    finally:
        await monitor.close()


async def main(argv: Optional[List[str]] = None):
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file

    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    if args.validate:
        success = validate_config_file(config_path)
        sys.exit(0 if success else 1)

    if args.check_once:
        success = await check_once(config_path, args.log_level, args.log_file)
        sys.exit(0 if success else 1)

    try:
        app = ProxyHealthApp(config_path, log_level=args.log_level, log_file=args.log_file)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        print(f"代理健康监控 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        sys.exit(1)
    except ProxyHealthError as e:
        print(f"代理健康监控错误: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def run():
    """命令行入口"""
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    asyncio.run(main())


if __name__ == "__main__":
    run()
