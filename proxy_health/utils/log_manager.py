"""
日志管理器模块

为监控引擎的各个组件提供统一的日志记录器：控制台输出、
可选的轮转日志文件，以及运行期间的日志级别调整。
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional, Dict, Any
from enum import Enum

# 所有组件日志记录器的公共前缀
LOGGER_NAMESPACE = 'proxy_health'


class LogLevel(Enum):
    """日志级别枚举"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogManager:
    """
    日志管理器类（单例）

    configure() 之后新建的日志记录器会使用新的配置，已经创建的
    记录器会在 configure() 中被重建处理器。
    """

    _instance: Optional['LogManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LogManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._loggers: Dict[str, logging.Logger] = {}
        self._file_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )
        self._console_format = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
        self._date_format = '%Y-%m-%d %H:%M:%S'

        self._log_level = LogLevel.INFO
        self._log_file: Optional[str] = None
        self._max_file_size = 10 * 1024 * 1024  # 10MB
        self._backup_count = 5
        self._enable_console = True
        self._enable_file = False

        self._initialized = True

    def configure(self, config: Dict[str, Any]) -> None:
        """
        配置日志管理器

        Args:
            config: 日志配置字典，可选键：
                - log_level: DEBUG / INFO / WARNING / ERROR / CRITICAL
                - log_file: 日志文件路径（设置后自动启用文件输出）
                - max_file_size: 单个日志文件最大字节数
                - backup_count: 轮转保留的文件数量
                - enable_console: 是否输出到控制台
                - enable_file: 是否输出到文件

        Raises:
            ValueError: 日志级别无效
        """
        if 'log_level' in config:
            level_str = str(config['log_level']).upper()
            if not hasattr(LogLevel, level_str):
                raise ValueError(f"无效的日志级别: {level_str}")
            self._log_level = LogLevel[level_str]

        if config.get('log_file'):
            self._log_file = config['log_file']
            self._enable_file = True

        if 'max_file_size' in config:
            self._max_file_size = config['max_file_size']
        if 'backup_count' in config:
            self._backup_count = config['backup_count']
        if 'enable_console' in config:
            self._enable_console = config['enable_console']
        if 'enable_file' in config:
            self._enable_file = config['enable_file']

        # 已存在的记录器按新配置重建处理器
        for logger in self._loggers.values():
            self._setup_handlers(logger)

    def get_logger(self, name: str) -> logging.Logger:
        """
        获取指定名称的日志记录器

        Args:
            name: 组件名称，会自动加上 proxy_health 前缀

        Returns:
            配置好的日志记录器实例
        """
        if not name.startswith(LOGGER_NAMESPACE):
            name = f'{LOGGER_NAMESPACE}.{name}'

        if name in self._loggers:
            return self._loggers[name]

        logger = logging.getLogger(name)
        self._setup_handlers(logger)
        self._loggers[name] = logger
        return logger

    def _setup_handlers(self, logger: logging.Logger) -> None:
        logger.setLevel(self._log_level.value)

        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        if self._enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self._log_level.value)
            console_handler.setFormatter(
                logging.Formatter(self._console_format, datefmt=self._date_format))
            logger.addHandler(console_handler)

        if self._enable_file and self._log_file:
            Path(self._log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                self._log_file,
                maxBytes=self._max_file_size,
                backupCount=self._backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(self._log_level.value)
            file_handler.setFormatter(
                logging.Formatter(self._file_format, datefmt=self._date_format))
            logger.addHandler(file_handler)

        # 处理器已经挂在组件记录器上，向上传播会重复输出
        logger.propagate = False

    def set_level(self, level: LogLevel) -> None:
        """
        设置全局日志级别

        Args:
            level: 新的日志级别
        """
        self._log_level = level
        for logger in self._loggers.values():
            logger.setLevel(level.value)
            for handler in logger.handlers:
                handler.setLevel(level.value)

    def get_log_stats(self) -> Dict[str, Any]:
        """获取日志统计信息"""
        stats = {
            'loggers_count': len(self._loggers),
            'log_level': self._log_level.name,
            'file_logging_enabled': self._enable_file,
            'console_logging_enabled': self._enable_console,
            'log_file': self._log_file,
            'max_file_size': self._max_file_size,
            'backup_count': self._backup_count
        }

        if self._log_file and os.path.exists(self._log_file):
            stats['current_log_size'] = os.path.getsize(self._log_file)

        return stats

    def cleanup(self) -> None:
        """关闭所有处理器并清空缓存的记录器"""
        for logger in self._loggers.values():
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()

        self._loggers.clear()


# 全局日志管理器实例
log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """获取日志记录器的便捷函数"""
    return log_manager.get_logger(name)


def configure_logging(config: Dict[str, Any]) -> None:
    """配置日志系统的便捷函数"""
    log_manager.configure(config)
