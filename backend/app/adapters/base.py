# app/adapters/base.py
# 渠道适配器基类
#
# 通知分发器和聊天会话引擎只依赖这里定义的能力，不依赖具体平台的协议：
# - send_text:  向 chat id 发送文本（可带键盘）
# - send_image: 向 chat id 发送图片/PDF 卡片 + 说明文字（可带键盘）
# - get_updates: 拉取新消息（仅聊天机器人渠道）

from abc import ABC, abstractmethod
from typing import Optional


class ChannelAdapter(ABC):
    """
    渠道适配器基类

    示例：
        class TelegramClient(ChannelAdapter):
            name = "telegram"
            supports_media = True

            async def send_text(self, chat_id, text, keyboard=None) -> dict:
                ...
    """

    # 渠道名称，对应用户资料中的身份字段
    name: str = "base"

    # 是否支持发送图片/文件
    supports_media: bool = False

    @abstractmethod
    async def send_text(
        self,
        chat_id: str,
        text: str,
        keyboard: Optional[dict] = None,
    ) -> dict:
        """
        发送文本消息

        Args:
            chat_id: 渠道内的接收者标识
            text: 文本内容
            keyboard: 键盘（reply_markup 格式），可选

        Returns:
            dict: 平台返回的结果

        Raises:
            Exception: 发送失败时抛出，由调用方决定是否吞掉
        """
        pass

    async def send_image(
        self,
        chat_id: str,
        content: bytes,
        filename: str,
        caption: str = "",
        keyboard: Optional[dict] = None,
    ) -> dict:
        """发送图片或 PDF 卡片，不支持媒体的渠道不需要实现"""
        raise NotImplementedError(f"{self.name} 不支持发送媒体")

    async def get_updates(self, offset: Optional[int] = None) -> list[dict]:
        """拉取新消息，只有聊天机器人渠道需要实现"""
        raise NotImplementedError(f"{self.name} 不支持拉取消息")
