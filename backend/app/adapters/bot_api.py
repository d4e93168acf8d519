# app/adapters/bot_api.py
# Bot API 客户端（Telegram / Bale）
#
# 功能说明：
# 1. BotApiClient - Telegram 兼容 Bot API 的 httpx 封装
# 2. TelegramClient - api.telegram.org，可走代理
# 3. BaleClient - tapi.bale.ai，接口与 Telegram 相同
#
# 接口地址格式：{base}/bot{token}/{method}
#
# 使用方法：
#   client = BaleClient(token="xxx")
#   await client.send_text("12345", "سلام")
#   updates = await client.get_updates(offset=101)

import json
from typing import Optional

import httpx

from app.core.config import settings
from app.core.logging import get_logger
from app.adapters.base import ChannelAdapter

logger = get_logger(__name__)


class BotApiError(Exception):
    """Bot API 返回 ok=false"""

    def __init__(self, method: str, description: str, error_code: Optional[int] = None):
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


class BotApiClient(ChannelAdapter):
    """
    Telegram 兼容 Bot API 客户端

    每次请求新建 httpx.AsyncClient，请求超时由 timeout 控制；
    getUpdates 的长轮询超时会在此基础上额外加上轮询时长。
    """

    BASE_URL = ""
    supports_media = True

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        proxy: Optional[str] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        初始化客户端

        Args:
            token: 机器人 Token
            base_url: API 地址，不填使用类默认值
            proxy: 代理地址（可选）
            timeout: 普通请求超时（秒）
            transport: 自定义 httpx transport（测试时注入 MockTransport）
        """
        self.token = token or ""
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.proxy = proxy or None
        self.timeout = timeout
        self._transport = transport

    def configure(self, token: str) -> None:
        """动态更换 Token"""
        self.token = token

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            proxy=self.proxy,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        timeout: Optional[float] = None,
    ):
        """
        调用 Bot API

        Args:
            method: API 方法名，如 sendMessage
            data: 参数（有 files 时以表单提交，否则以 JSON 提交）
            files: 上传的文件
            timeout: 本次请求超时

        Returns:
            响应中的 result 字段

        Raises:
            ValueError: Token 未配置
            BotApiError: 平台返回 ok=false
            httpx.HTTPError: 网络错误
        """
        if not self.token:
            raise ValueError(f"{self.name} 机器人 Token 未配置")

        url = f"{self.base_url}/bot{self.token}/{method}"

        async with self._client(timeout or self.timeout) as client:
            if files:
                response = await client.post(url, data=data, files=files)
            else:
                response = await client.post(url, json=data or {})

        try:
            payload = response.json()
        except ValueError:
            response.raise_for_status()
            raise BotApiError(method, "响应不是 JSON")

        if not payload.get("ok"):
            raise BotApiError(
                method,
                payload.get("description", "unknown error"),
                payload.get("error_code"),
            )
        return payload.get("result")

    # ==================== 消息发送 ====================

    async def send_text(
        self,
        chat_id: str,
        text: str,
        keyboard: Optional[dict] = None,
    ) -> dict:
        data = {"chat_id": chat_id, "text": text}
        if keyboard:
            data["reply_markup"] = keyboard
        return await self._request("sendMessage", data)

    async def send_image(
        self,
        chat_id: str,
        content: bytes,
        filename: str,
        caption: str = "",
        keyboard: Optional[dict] = None,
    ) -> dict:
        """
        发送卡片：PDF 走 sendDocument，图片走 sendPhoto
        """
        is_pdf = filename.lower().endswith(".pdf")
        method = "sendDocument" if is_pdf else "sendPhoto"
        field = "document" if is_pdf else "photo"
        mime = "application/pdf" if is_pdf else "image/png"

        data = {"chat_id": str(chat_id)}
        if caption:
            data["caption"] = caption
        if keyboard:
            # multipart 表单中 reply_markup 需要是 JSON 字符串
            data["reply_markup"] = json.dumps(keyboard, ensure_ascii=False)

        return await self._request(
            method,
            data=data,
            files={field: (filename, content, mime)},
        )

    async def answer_callback(self, callback_query_id: str, text: Optional[str] = None) -> dict:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return await self._request("answerCallbackQuery", data)

    # ==================== 消息接收 ====================

    async def get_updates(self, offset: Optional[int] = None, poll_timeout: int = 0) -> list[dict]:
        """
        长轮询拉取更新

        Args:
            offset: 上次处理的 update_id + 1
            poll_timeout: 长轮询等待时长（秒）
        """
        data = {"timeout": poll_timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            data["offset"] = offset
        result = await self._request(
            "getUpdates",
            data,
            timeout=self.timeout + poll_timeout,
        )
        return result or []

    async def get_me(self) -> dict:
        return await self._request("getMe")

    async def test_connection(self) -> bool:
        """测试 Token 是否有效"""
        try:
            me = await self.get_me()
            logger.info(f"[{self.name}] 连接成功: @{me.get('username')}")
            return True
        except Exception as e:
            logger.error(f"[{self.name}] 连接测试失败: {e}")
            return False


class TelegramClient(BotApiClient):
    name = "telegram"
    BASE_URL = "https://api.telegram.org"

    def __init__(self, token: Optional[str] = None, **kwargs):
        kwargs.setdefault("base_url", settings.TELEGRAM_API_BASE)
        kwargs.setdefault("proxy", settings.BOT_PROXY_URL or None)
        super().__init__(token, **kwargs)


class BaleClient(BotApiClient):
    name = "bale"
    BASE_URL = "https://tapi.bale.ai"

    def __init__(self, token: Optional[str] = None, **kwargs):
        kwargs.setdefault("base_url", settings.BALE_API_BASE)
        super().__init__(token, **kwargs)


BOT_CLIENTS: dict[str, type[BotApiClient]] = {
    "telegram": TelegramClient,
    "bale": BaleClient,
}
