"""TCP连通性探测器"""

import asyncio

from .base import BaseProber
from .factory import register_prober
from ..models.health import ProxyTarget
from ..utils.exceptions import ProbeError


@register_prober('socks4', 'socks4a', 'socks5', 'tcp')
class TcpConnectProber(BaseProber):
    """只检查代理端口能否建立TCP连接，不做协议握手"""

    async def probe(self, target: ProxyTarget) -> None:
        try:
            reader, writer = await asyncio.open_connection(target.host, target.port)
        except OSError as e:
            raise ProbeError(f"TCP连接失败: {e}",
                             target_id=target.id, proxy_type=target.proxy_type, cause=e)

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            self.logger.debug(f"关闭到代理 {target.id} 的连接时出错: {e}")
