"""配置验证工具"""

from numbers import Real
from typing import Dict, Any, List

from .exceptions import ConfigError

# 字段 -> 规则；time 类字段单位为毫秒
_MONITORING_RULES = {
    'check_interval': 'positive_number',
    'health_threshold': 'percent',
    'warning_threshold': 'percent',
    'critical_threshold': 'percent',
    'max_consecutive_failures': 'positive_int',
    'enable_auto_failover': 'bool',
    'enable_alerts': 'bool',
    'alert_cooldown': 'non_negative_number',
    'test_timeout': 'positive_number',
    'batch_size': 'positive_int',
    'monitoring_enabled': 'bool',
    'batch_delay': 'non_negative_number',
    'max_batches_per_pass': 'positive_int',
}

SUPPORTED_PROXY_TYPES = ['http', 'https', 'socks4', 'socks4a', 'socks5', 'tcp']


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_monitoring_config(config: Dict[str, Any], partial: bool = False) -> None:
        """
        验证监控配置

        Args:
            config: 监控配置字典
            partial: 为True时只校验出现的字段，跳过阈值之间的顺序检查

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("监控配置必须是字典类型")

        unknown = [key for key in config if key not in _MONITORING_RULES]
        if unknown:
            raise ConfigError(f"未知的监控配置项: {', '.join(unknown)}", field=unknown[0])

        for key, value in config.items():
            rule = _MONITORING_RULES[key]
            if rule == 'bool':
                if not isinstance(value, bool):
                    raise ConfigError(f"{key} 必须是布尔值", field=key)
            elif rule == 'positive_int':
                if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                    raise ConfigError(f"{key} 必须是正整数", field=key)
            elif rule == 'positive_number':
                if not _is_number(value) or value <= 0:
                    raise ConfigError(f"{key} 必须是正数", field=key)
            elif rule == 'non_negative_number':
                if not _is_number(value) or value < 0:
                    raise ConfigError(f"{key} 不能为负数", field=key)
            elif rule == 'percent':
                if not _is_number(value) or not 0 <= value <= 100:
                    raise ConfigError(f"{key} 必须在 0 到 100 之间", field=key)

        if partial:
            return

        health = config['health_threshold']
        warning = config['warning_threshold']
        critical = config['critical_threshold']
        if not health > warning > critical:
            raise ConfigError(
                "阈值必须满足 health_threshold > warning_threshold > critical_threshold "
                f"(当前: {health} / {warning} / {critical})",
                field='health_threshold'
            )

    @staticmethod
    def validate_target_config(target: Dict[str, Any]) -> None:
        """
        验证单个代理目标配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(target, dict):
            raise ConfigError("代理配置必须是字典类型")

        for field in ['id', 'host', 'port']:
            if field not in target:
                raise ConfigError(f"代理配置缺少必需的配置项: {field}", field=field)

        target_id = target['id']
        if not isinstance(target['host'], str) or not target['host']:
            raise ConfigError(f"代理 '{target_id}' 的 host 必须是非空字符串", field='host')

        port = target['port']
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise ConfigError(f"代理 '{target_id}' 的端口无效: {port}", field='port')

        proxy_type = str(target.get('type', 'http')).lower()
        if proxy_type not in SUPPORTED_PROXY_TYPES:
            raise ConfigError(
                f"代理 '{target_id}' 的类型 '{proxy_type}' 不受支持。支持的类型: {SUPPORTED_PROXY_TYPES}",
                field='type')

    @classmethod
    def validate_targets_config(cls, targets: List[Dict[str, Any]]) -> None:
        """验证代理列表，代理ID不能重复"""
        if not isinstance(targets, list):
            raise ConfigError("targets配置必须是列表类型")

        seen = set()
        for target in targets:
            cls.validate_target_config(target)
            target_id = str(target['id'])
            if target_id in seen:
                raise ConfigError(f"代理ID重复: {target_id}", field='id')
            seen.add(target_id)

    @staticmethod
    def validate_alert_config(alert_config: Dict[str, Any]) -> None:
        """
        验证告警通知配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(alert_config, dict):
            raise ConfigError("告警配置必须是字典类型")

        for field in ['name', 'type', 'url']:
            if field not in alert_config:
                raise ConfigError(f"告警配置缺少必需的配置项: {field}", field=field)

        if alert_config['type'] != 'http':
            raise ConfigError(f"不支持的告警类型: {alert_config['type']}", field='type')

    @staticmethod
    def validate_prober_config(prober_config: Dict[str, Any]) -> None:
        """验证探测器配置"""
        if not isinstance(prober_config, dict):
            raise ConfigError("prober配置必须是字典类型")

        test_url = prober_config.get('test_url')
        if test_url is not None:
            if not isinstance(test_url, str) or not test_url.startswith(('http://', 'https://')):
                raise ConfigError("test_url 必须是 http:// 或 https:// 开头的URL", field='test_url')

        expected_status = prober_config.get('expected_status')
        if expected_status is not None:
            if not isinstance(expected_status, int) or not 100 <= expected_status <= 599:
                raise ConfigError("expected_status 必须是有效的HTTP状态码", field='expected_status')

        timeout = prober_config.get('timeout')
        if timeout is not None:
            if not _is_number(timeout) or timeout <= 0:
                raise ConfigError("timeout 必须是正数（毫秒）", field='timeout')

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        log_level = global_config.get('log_level')
        if log_level is not None:
            valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
            if log_level not in valid_levels:
                raise ConfigError(f"log_level 必须是以下值之一: {valid_levels}", field='log_level')

        retention = global_config.get('alert_retention')
        if retention is not None:
            if not isinstance(retention, int) or isinstance(retention, bool) or retention <= 0:
                raise ConfigError("alert_retention 必须是正整数", field='alert_retention')
