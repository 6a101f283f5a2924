"""配置管理器"""

import os
from typing import Any, Dict, List, Optional

import yaml

from ..models.health import MonitoringConfig, ProxyTarget
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证

    配置文件包含 global、monitoring、prober、targets、alerts 五个部分，都是可选的。
    """

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败，此时保留之前的配置
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except PermissionError as e:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self._validate_config(config)

        self.logger.info(
            f"配置验证成功，包含 {len(config.get('targets') or [])} 个代理和 "
            f"{len(config.get('alerts') or [])} 个告警通知配置"
        )

        old_config = self.config
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)

        if old_config:
            self._log_config_changes(old_config, config)
        else:
            self.logger.info("首次加载配置文件")

        return self.config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型", config_path=self.config_path)

        if config.get('global') is not None:
            ConfigValidator.validate_global_config(config['global'])

        if config.get('monitoring') is not None:
            # 与默认值合并后整体校验，阈值顺序也一并检查
            MonitoringConfig().merge(config['monitoring'])

        if config.get('prober') is not None:
            ConfigValidator.validate_prober_config(config['prober'])

        if config.get('targets') is not None:
            ConfigValidator.validate_targets_config(config['targets'])

        if config.get('alerts') is not None:
            if not isinstance(config['alerts'], list):
                raise ConfigError("alerts配置必须是列表类型", config_path=self.config_path)
            for alert_config in config['alerts']:
                ConfigValidator.validate_alert_config(alert_config)

    def get_global_config(self) -> Dict[str, Any]:
        return self.config.get('global') or {}

    def get_monitoring_config(self) -> MonitoringConfig:
        """获取与默认值合并后的监控配置"""
        return MonitoringConfig().merge(self.config.get('monitoring') or {})

    def get_prober_config(self) -> Dict[str, Any]:
        return self.config.get('prober') or {}

    def get_targets(self) -> List[ProxyTarget]:
        """获取代理列表"""
        return [ProxyTarget.from_dict(item) for item in self.config.get('targets') or []]

    def get_alerts_config(self) -> List[Dict[str, Any]]:
        return self.config.get('alerts') or []

    def is_config_changed(self) -> bool:
        """检查配置文件自上次加载后是否被修改"""
        try:
            if not os.path.exists(self.config_path):
                return False
            current_modified = os.path.getmtime(self.config_path)
            return self.last_modified is None or current_modified > self.last_modified
        except OSError:
            return False

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件

        Raises:
            ConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        old_targets = {str(t['id']): t for t in old_config.get('targets') or []}
        new_targets = {str(t['id']): t for t in new_config.get('targets') or []}

        added = sorted(set(new_targets) - set(old_targets))
        if added:
            self.logger.info(f"新增代理: {', '.join(added)}")

        removed = sorted(set(old_targets) - set(new_targets))
        if removed:
            self.logger.info(f"删除代理: {', '.join(removed)}")

        for target_id in set(old_targets) & set(new_targets):
            if old_targets[target_id] != new_targets[target_id]:
                self.logger.info(f"代理配置已修改: {target_id}")

        for section in ('global', 'monitoring', 'prober', 'alerts'):
            if old_config.get(section) != new_config.get(section):
                self.logger.info(f"{section} 配置已修改")
                self.logger.debug(f"新的 {section} 配置: {new_config.get(section)}")
