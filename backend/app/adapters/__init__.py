# app/adapters/__init__.py
# 渠道适配器模块
#
# 支持的渠道：
# - telegram: Telegram Bot API
# - bale: Bale Bot API（与 Telegram 兼容）
# - push: Web Push 网关

from app.adapters.base import ChannelAdapter
from app.adapters.bot_api import (
    BotApiClient,
    BotApiError,
    TelegramClient,
    BaleClient,
    BOT_CLIENTS,
)
from app.adapters.push import PushClient

__all__ = [
    "ChannelAdapter",
    "BotApiClient",
    "BotApiError",
    "TelegramClient",
    "BaleClient",
    "BOT_CLIENTS",
    "PushClient",
]
