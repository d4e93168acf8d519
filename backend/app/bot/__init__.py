# app/bot/__init__.py
# 聊天机器人模块
#
# 提供：
# 1. 命令解析（parser）
# 2. 会话存储（session）
# 3. 会话引擎（engine）

from app.bot.engine import BotReply, ConversationEngine
from app.bot.parser import Intent, IntentKind, normalize, parse
from app.bot.session import (
    ConversationState,
    InMemorySessionStore,
    RedisSessionStore,
    Session,
    SessionStore,
    create_session_store,
)

__all__ = [
    "BotReply",
    "ConversationEngine",
    "Intent",
    "IntentKind",
    "normalize",
    "parse",
    "ConversationState",
    "InMemorySessionStore",
    "RedisSessionStore",
    "Session",
    "SessionStore",
    "create_session_store",
]
