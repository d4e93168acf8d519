# app/adapters/push.py
# Web Push 渠道
#
# 推送由外部网关完成（负责 VAPID 签名等），这里只把订阅信息和消息 POST 给网关：
#   POST {PUSH_GATEWAY_URL}/send
#   {"subscription": {...}, "title": "...", "body": "..."}

from typing import Optional, Union

import httpx

from app.core.config import settings
from app.adapters.base import ChannelAdapter


class PushClient(ChannelAdapter):
    """Web Push 网关客户端"""

    name = "push"
    supports_media = False

    def __init__(
        self,
        gateway_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.gateway_url = (gateway_url or settings.PUSH_GATEWAY_URL).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def send_text(
        self,
        chat_id: Union[str, dict],
        text: str,
        keyboard: Optional[dict] = None,
    ) -> dict:
        """
        chat_id 是用户的 push_subscription；标题取消息第一行
        """
        if not self.gateway_url:
            raise ValueError("PUSH_GATEWAY_URL 未配置")

        title, _, body = text.partition("\n")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.gateway_url}/send",
                json={"subscription": chat_id, "title": title, "body": body or title},
            )
            response.raise_for_status()
        return {"status": response.status_code}
