"""HTTP代理探测器"""

from typing import Dict, Any, Optional

import aiohttp

from .base import BaseProber
from .factory import register_prober
from ..models.health import ProxyTarget
from ..utils.exceptions import ProbeError, ErrorCode

DEFAULT_TEST_URL = 'http://httpbin.org/ip'
# 单次请求的超时时间（毫秒）
DEFAULT_REQUEST_TIMEOUT = 10000


@register_prober('http', 'https')
class HttpProxyProber(BaseProber):
    """通过代理请求测试URL来检查HTTP代理是否可用"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        初始化HTTP代理探测器

        Args:
            config: 可选键 test_url、expected_status、timeout、ssl_verify、headers
        """
        super().__init__(config)
        self.test_url = self.config.get('test_url', DEFAULT_TEST_URL)
        self.expected_status = self.config.get('expected_status', 200)
        self.timeout = self.config.get('timeout', DEFAULT_REQUEST_TIMEOUT)
        self.ssl_verify = self.config.get('ssl_verify', True)
        self.headers = self.config.get('headers', {})

    def validate_config(self) -> bool:
        if not isinstance(self.test_url, str) or not self.test_url.startswith(('http://', 'https://')):
            return False

        if not isinstance(self.expected_status, int) or not 100 <= self.expected_status <= 599:
            return False

        if not isinstance(self.timeout, (int, float)) or isinstance(self.timeout, bool) \
                or self.timeout <= 0:
            return False

        return True

    @staticmethod
    def build_proxy_url(target: ProxyTarget) -> str:
        """生成 aiohttp 使用的代理地址，HTTPS代理同样通过 CONNECT 建立隧道"""
        return f"http://{target.host}:{target.port}"

    async def probe(self, target: ProxyTarget) -> None:
        """
        通过代理发送一次GET请求

        Raises:
            ProbeError: 连接失败或状态码不符合期望
        """
        proxy_auth = None
        if target.username:
            proxy_auth = aiohttp.BasicAuth(target.username, target.password or '')

        timeout = aiohttp.ClientTimeout(total=self.timeout / 1000)

        try:
            async with aiohttp.ClientSession(timeout=timeout, headers=self.headers) as session:
                async with session.get(
                        self.test_url,
                        proxy=self.build_proxy_url(target),
                        proxy_auth=proxy_auth,
                        ssl=bool(self.ssl_verify)
                ) as response:
                    if response.status == 407:
                        raise ProbeError("代理认证失败",
                                         ErrorCode.AUTHENTICATION_ERROR,
                                         target_id=target.id, proxy_type=target.proxy_type)
                    if response.status != self.expected_status:
                        raise ProbeError(f"HTTP状态码不符合期望: {response.status}",
                                         ErrorCode.INVALID_RESPONSE,
                                         target_id=target.id, proxy_type=target.proxy_type)
                    await response.read()

        except aiohttp.ClientError as e:
            raise ProbeError(f"HTTP代理请求失败: {e}",
                             target_id=target.id, proxy_type=target.proxy_type, cause=e)
