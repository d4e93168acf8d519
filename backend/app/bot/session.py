# app/bot/session.py
# 聊天会话存储
#
# 每个聊天身份（平台 + chat id）一个会话：当前状态 + 已收集的字段。
# 会话由 ConversationEngine 持有的 SessionStore 管理：
# - InMemorySessionStore: 进程内字典（默认，重启丢失）
# - RedisSessionStore: 保存在 Redis，带过期时间
#
# 使用方法：
#   sessions = create_session_store()
#   session = await sessions.get("bale:12345")
#   session.state = ConversationState.PAY_AMOUNT
#   await sessions.save("bale:12345", session)

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.core.redis import RedisClient, redis_client

logger = get_logger(__name__)


class ConversationState(str, Enum):
    """会话状态"""
    IDLE = "idle"
    # 付款单：金额 → 收款人 → 用途
    PAY_AMOUNT = "pay_amount"
    PAY_PAYEE = "pay_payee"
    PAY_DESCRIPTION = "pay_description"
    # 出门证：收货人 → 货物 → 数量
    EXIT_RECIPIENT = "exit_recipient"
    EXIT_GOODS = "exit_goods"
    EXIT_COUNT = "exit_count"
    # 出库单：物料 → 数量 → 提货人
    BIJAK_ITEM = "bijak_item"
    BIJAK_COUNT = "bijak_count"
    BIJAK_RECIPIENT = "bijak_recipient"
    # 归档搜索
    ARCHIVE_NUMBER = "archive_number"
    ARCHIVE_DATE = "archive_date"


@dataclass
class Session:
    state: str = ConversationState.IDLE.value
    data: dict = field(default_factory=dict)

    def reset(self) -> None:
        self.state = ConversationState.IDLE.value
        self.data = {}

    def start(self, state: ConversationState, **data) -> None:
        """进入新的流程，清空之前收集的字段"""
        self.state = state.value
        self.data = dict(data)


class SessionStore(ABC):
    """会话存储接口"""

    @abstractmethod
    async def get(self, key: str) -> Session:
        """获取会话，不存在时返回新的空闲会话"""
        pass

    @abstractmethod
    async def save(self, key: str, session: Session) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass


class InMemorySessionStore(SessionStore):

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    async def get(self, key: str) -> Session:
        session = self._sessions.get(key)
        if session is None:
            session = Session()
        return Session(state=session.state, data=dict(session.data))

    async def save(self, key: str, session: Session) -> None:
        self._sessions[key] = Session(state=session.state, data=dict(session.data))

    async def delete(self, key: str) -> None:
        self._sessions.pop(key, None)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisSessionStore(SessionStore):
    """
    Redis 会话存储

    键格式：approval_desk:session:<平台>:<chat id>，值为 JSON
    """

    KEY_PREFIX = "approval_desk:session:"

    def __init__(self, client: Optional[RedisClient] = None, ttl: Optional[int] = None):
        self.client = client or redis_client
        self.ttl = ttl or settings.SESSION_TTL_SECONDS

    async def get(self, key: str) -> Session:
        raw = await self.client.get(self.KEY_PREFIX + key)
        if not raw:
            return Session()
        try:
            data = json.loads(raw)
            return Session(state=data.get("state", ConversationState.IDLE.value), data=data.get("data") or {})
        except (ValueError, AttributeError):
            logger.warning(f"[RedisSessionStore] 会话数据损坏，已重置: {key}")
            return Session()

    async def save(self, key: str, session: Session) -> None:
        await self.client.set(
            self.KEY_PREFIX + key,
            json.dumps(asdict(session), ensure_ascii=False),
            ex=self.ttl,
        )

    async def delete(self, key: str) -> None:
        await self.client.delete(self.KEY_PREFIX + key)


def create_session_store() -> SessionStore:
    """按 SESSION_BACKEND 创建会话存储"""
    if settings.SESSION_BACKEND == "redis":
        return RedisSessionStore()
    return InMemorySessionStore()
