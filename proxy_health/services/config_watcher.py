"""配置文件监控器"""

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config_manager import ConfigManager
from ..utils.exceptions import ConfigError

ChangeCallback = Callable[[Dict[str, Any], Dict[str, Any]], None]


class ConfigFileHandler(FileSystemEventHandler):
    """只关心目标配置文件的修改事件"""

    def __init__(self, config_path: str, callback: Callable[[], None]):
        self.config_path = config_path
        self.callback = callback
        self.logger = logging.getLogger(__name__)

    def on_modified(self, event):
        if event.is_directory or os.path.abspath(event.src_path) != self.config_path:
            return

        self.logger.info(f"检测到配置文件变更: {self.config_path}")
        try:
            self.callback()
        except Exception as e:
            self.logger.error(f"处理配置变更失败: {e}")


class ConfigWatcher:
    """配置文件监控器，文件修改后重新加载并通知回调

    watchdog 的事件在观察者线程中触发，回调也在该线程执行；
    需要操作事件循环中的对象时，回调应自行切换回事件循环线程。
    """

    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.observer: Optional[Observer] = None
        self.change_callbacks: List[ChangeCallback] = []
        self.logger = logging.getLogger(__name__)
        self._running = False

    def add_change_callback(self, callback: ChangeCallback):
        """添加配置变更回调，参数为 (旧配置, 新配置)"""
        self.change_callbacks.append(callback)

    def remove_change_callback(self, callback: ChangeCallback):
        if callback in self.change_callbacks:
            self.change_callbacks.remove(callback)

    def _on_config_changed(self):
        old_config = dict(self.config_manager.config)
        try:
            new_config = self.config_manager.reload_config()
        except ConfigError as e:
            # 新配置无效时继续使用旧配置
            self.logger.error(f"配置重新加载失败，继续使用当前配置: {e}")
            return

        if new_config == old_config:
            self.logger.debug("配置内容没有变化")
            return

        self.logger.info("配置文件已重新加载")
        for callback in self.change_callbacks:
            try:
                callback(old_config, new_config)
            except Exception as e:
                self.logger.error(f"配置变更回调执行失败: {e}")

    def start_watching(self):
        """开始监控配置文件

        Raises:
            ConfigError: 无法启动文件监控
        """
        if self._running:
            self.logger.warning("配置监控器已经在运行")
            return

        config_path = os.path.abspath(self.config_manager.config_path)
        try:
            self.observer = Observer()
            self.observer.schedule(ConfigFileHandler(config_path, self._on_config_changed),
                                   os.path.dirname(config_path), recursive=False)
            self.observer.start()
        except Exception as e:
            self.observer = None
            self.logger.error(f"启动配置监控失败: {e}")
            raise ConfigError(f"启动配置监控失败: {e}", config_path=config_path, cause=e)

        self._running = True
        self.logger.info(f"开始监控配置文件: {self.config_manager.config_path}")

    def stop_watching(self):
        if not self._running:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

        self._running = False
        self.logger.info("配置文件监控已停止")

    def is_running(self) -> bool:
        return self._running

    def __enter__(self):
        self.start_watching()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_watching()
