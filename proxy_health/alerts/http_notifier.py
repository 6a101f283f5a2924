"""HTTP告警通知器（Webhook）"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseNotifier
from ..models.health import Alert
from ..utils.exceptions import AlertConfigError, AlertSendError
from ..utils.log_manager import get_logger


class HttpNotifier(BaseNotifier):
    """通过HTTP请求把告警推送到Webhook"""

    VALID_METHODS = ['POST', 'PUT', 'PATCH']

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化HTTP通知器

        Args:
            name: 通知器名称
            config: 通知器配置，url 必填；可选 method、headers、template、
                    max_retries、retry_delay（秒）、retry_backoff、timeout（秒）

        Raises:
            AlertConfigError: 配置无效
        """
        super().__init__(name, config)
        self.logger = get_logger(f'notifier.http.{self.name}')

        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1.0)
        self.retry_backoff = config.get('retry_backoff', 2.0)

        self.url = config.get('url', '')
        self.method = str(config.get('method', 'POST')).upper()
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')

        if not self.validate_config():
            raise AlertConfigError(f"HTTP通知器配置无效: {name}", notifier_name=name)

    def validate_config(self) -> bool:
        if not self.url:
            self.logger.error(f"HTTP通知器 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            self.logger.error(f"HTTP通知器 {self.name} URL格式无效: {self.url}")
            return False

        if self.method not in self.VALID_METHODS:
            self.logger.error(
                f"HTTP通知器 {self.name} 不支持的HTTP方法: {self.method}, "
                f"支持的方法: {self.VALID_METHODS}"
            )
            return False

        if self.max_retries < 0 or self.retry_delay < 0:
            self.logger.error(f"HTTP通知器 {self.name} 重试配置不能为负数")
            return False

        if self.template is not None and not isinstance(self.template, str):
            self.logger.error(f"HTTP通知器 {self.name} 模板必须是字符串")
            return False

        return True

    async def send_alert(self, alert: Alert) -> bool:
        """
        发送告警，失败时按指数退避重试

        Raises:
            AlertSendError: 所有重试均失败
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            try:
                if await self._send_request(alert):
                    if attempt > 0:
                        self.logger.info(f"HTTP通知器 {self.name} 重试第 {attempt} 次后发送成功")
                    return True
                last_error = "Webhook返回非2xx状态码"
            except AlertSendError as e:
                last_error = e.message

            self.logger.warning(
                f"HTTP通知器 {self.name} 发送失败 "
                f"(尝试 {attempt + 1}/{self.max_retries + 1}): {last_error}"
            )
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_delay * (self.retry_backoff ** attempt))

        raise AlertSendError(f"HTTP告警发送失败: {last_error}", notifier_name=self.name)

    async def _send_request(self, alert: Alert) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                        method=self.method,
                        url=self.url,
                        headers=self.headers,
                        **self._prepare_request_data(alert)
                ) as response:
                    if 200 <= response.status < 300:
                        return True

                    body = await response.text()
                    self.logger.warning(
                        f"HTTP通知器 {self.name} 收到错误响应 "
                        f"(状态码: {response.status}, 响应: {body[:200]})"
                    )
                    return False

        except aiohttp.ClientError as e:
            raise AlertSendError(f"HTTP请求失败: {e}", notifier_name=self.name, cause=e)
        except asyncio.TimeoutError:
            raise AlertSendError("HTTP请求超时", notifier_name=self.name)

    def _prepare_request_data(self, alert: Alert) -> Dict[str, Any]:
        """模板渲染结果是合法JSON时以JSON发送，否则按文本发送"""
        if not self.template:
            return {'json': alert.to_dict()}

        rendered = self.render_template(self.template, alert)
        try:
            return {'json': json.loads(rendered)}
        except json.JSONDecodeError:
            return {'data': rendered}

    @staticmethod
    def render_template(template_str: str, alert: Alert) -> str:
        """
        使用 {{variable}} 语法渲染模板

        可用变量: alert_id、type、severity、target_id、message、timestamp，
        以及 details 中的每个键（details_<key>）。
        """
        template_vars = {
            'alert_id': alert.id,
            'type': alert.type.value,
            'severity': alert.severity.value,
            'target_id': alert.target_id,
            'message': alert.message,
            'timestamp': alert.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
        }
        for key, value in alert.details.items():
            template_vars[f'details_{key}'] = value

        is_json_template = template_str.strip().startswith('{')
        rendered = template_str
        for key, value in template_vars.items():
            safe_value = str(value)
            if is_json_template:
                # 去掉 json.dumps 结果两侧的引号，得到转义后的字符串内容
                safe_value = json.dumps(safe_value, ensure_ascii=False)[1:-1]
            rendered = rendered.replace(f'{{{{{key}}}}}', safe_value)

        return rendered

    def get_config_summary(self) -> Dict[str, Any]:
        """获取配置摘要"""
        return {
            'name': self.name,
            'type': 'http',
            'url': self.url,
            'method': self.method,
            'timeout': self.get_timeout(),
            'max_retries': self.max_retries,
            'has_template': bool(self.template)
        }
