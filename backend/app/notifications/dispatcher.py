# app/notifications/dispatcher.py
# 多渠道通知分发
#
# 功能说明：
# 1. 解析接收人：按角色（该角色所有用户 + 所有 admin）或按用户名（只有这个用户）
# 2. 按用户 id 去重（既是目标角色又是 admin 的用户只收一次）
# 3. 对每个接收人的每个渠道身份（telegram / bale / push）独立投递，
#    每次投递都有超时；一次失败不影响其他渠道和其他接收人
# 4. 有单据时先渲染一次卡片（PDF），支持媒体的渠道发卡片 + 说明 + 审批按钮，
#    渲染失败或渠道不支持媒体时发纯文本
# 5. 投递失败记录结构化日志事件 notification.delivery_failed，并写入 DeliveryReport
# 6. notify_in_background() 以 asyncio 任务运行，不阻塞调用方，也不会把异常抛给调用方
#
# 使用方法：
#   from app.notifications import notification_dispatcher, NotificationTarget
#
#   notification_dispatcher.notify_in_background(
#       [NotificationTarget.for_role("financial")],
#       awaiting_action_message(order),
#       document=order,
#       with_actions=True,
#   )

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from app.core.config import settings
from app.core.logging import get_logger, log_event
from app.adapters.base import ChannelAdapter
from app.notifications.messages import action_keyboard
from app.notifications.renderer import CardRenderer, card_renderer
from app.storage.document_store import JsonDocumentStore, document_store

logger = get_logger(__name__)


# 渠道 → 用户资料中的身份字段
CHANNEL_IDENTITY_FIELDS = {
    "telegram": "telegram_chat_id",
    "bale": "bale_chat_id",
    "push": "push_subscription",
}

# Telegram / Bale 图片说明文字上限
CAPTION_MAX_LENGTH = 1024


@dataclass(frozen=True)
class NotificationTarget:
    """通知目标：角色或具体用户名，二选一"""
    role: Optional[str] = None
    username: Optional[str] = None

    @classmethod
    def for_role(cls, role: str) -> "NotificationTarget":
        return cls(role=role)

    @classmethod
    def for_user(cls, username: str) -> "NotificationTarget":
        return cls(username=username)


@dataclass
class DeliveryAttempt:
    """一次投递（一个接收人的一个渠道身份）"""
    channel: str
    user_id: Optional[str]
    username: Optional[str]
    ok: bool
    via_card: bool = False
    error: Optional[str] = None


@dataclass
class DeliveryReport:
    recipients: list[str] = field(default_factory=list)
    attempts: list[DeliveryAttempt] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for a in self.attempts if a.ok)

    @property
    def failed(self) -> int:
        return sum(1 for a in self.attempts if not a.ok)


def resolve_recipients(users: list[dict], targets: Iterable[NotificationTarget]) -> list[dict]:
    """
    把通知目标解析成去重后的用户列表

    Args:
        users: 文档库中的全部用户
        targets: 通知目标

    Returns:
        list[dict]: 接收人（保持首次出现的顺序）
    """
    selected: list[dict] = []
    seen: set[str] = set()

    def add(user: dict) -> None:
        key = str(user.get("id") or user.get("username"))
        if key in seen:
            return
        seen.add(key)
        selected.append(user)

    for target in targets:
        if target.username:
            for user in users:
                if user.get("username") == target.username:
                    add(user)
                    break
        elif target.role:
            for user in users:
                if user.get("role") in (target.role, "admin"):
                    add(user)

    return [u for u in selected if u.get("receive_notifications", True)]


class NotificationDispatcher:
    """
    通知分发器

    渠道在运行时注册（机器人 Worker 启动时注册自己的客户端），
    没有注册的渠道直接跳过，不计入投递次数。
    """

    def __init__(
        self,
        store: Optional[JsonDocumentStore] = None,
        renderer: Optional[CardRenderer] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store or document_store
        self.renderer = renderer or card_renderer
        self.timeout = timeout or settings.NOTIFY_TIMEOUT_SECONDS
        self._channels: dict[str, ChannelAdapter] = {}
        self._tasks: set[asyncio.Task] = set()

    # ==================== 渠道注册 ====================

    def register_channel(self, adapter: ChannelAdapter, name: Optional[str] = None) -> None:
        self._channels[name or adapter.name] = adapter
        logger.debug(f"[Dispatcher] 注册渠道: {name or adapter.name}")

    def unregister_channel(self, name: str) -> None:
        self._channels.pop(name, None)

    def get_channel(self, name: str) -> Optional[ChannelAdapter]:
        return self._channels.get(name)

    @property
    def channels(self) -> list[str]:
        return list(self._channels.keys())

    # ==================== 分发 ====================

    async def notify(
        self,
        targets: Iterable[NotificationTarget],
        message: str,
        document: Optional[dict] = None,
        with_actions: bool = False,
        group_chats: Optional[dict[str, list[str]]] = None,
    ) -> DeliveryReport:
        """
        解析接收人并向每个渠道身份投递

        Args:
            targets: 通知目标
            message: 文本（有卡片时作为说明文字）
            document: 单据（有则渲染卡片）
            with_actions: 是否附带审批/驳回按钮
            group_chats: 额外的群组 {渠道: [chat_id, ...]}

        Returns:
            DeliveryReport: 每次投递的结果
        """
        snapshot = await self.store.read()
        recipients = resolve_recipients(snapshot["users"], list(targets))
        report = DeliveryReport(recipients=[u.get("username", "") for u in recipients])

        # (adapter, channel, chat_id, user)
        deliveries = []
        for user in recipients:
            for channel, identity_field in CHANNEL_IDENTITY_FIELDS.items():
                identity = user.get(identity_field)
                if not identity:
                    continue
                adapter = self._channels.get(channel)
                if adapter is None:
                    logger.debug(f"[Dispatcher] 渠道未启用，跳过: {channel} -> {user.get('username')}")
                    continue
                deliveries.append((adapter, channel, identity, user))

        for channel, chat_ids in (group_chats or {}).items():
            adapter = self._channels.get(channel)
            if adapter is None:
                continue
            for chat_id in chat_ids or []:
                deliveries.append((adapter, channel, chat_id, None))

        if not deliveries:
            logger.info(f"[Dispatcher] 没有可投递的渠道身份 (接收人: {len(recipients)})")
            return report

        card = None
        if document is not None and any(a.supports_media for a, *_ in deliveries):
            card = await self._render(document)

        keyboard = action_keyboard(document) if (with_actions and document) else None
        filename = f"{document['doc_type']}-{document['number']}.pdf" if document else ""

        report.attempts = list(await asyncio.gather(*[
            self._deliver(adapter, channel, chat_id, user, message, card, filename, keyboard)
            for adapter, channel, chat_id, user in deliveries
        ]))

        logger.info(
            f"[Dispatcher] 通知完成: 接收人 {len(recipients)}，"
            f"成功 {report.delivered}，失败 {report.failed}"
        )
        return report

    def notify_in_background(self, *args, **kwargs) -> asyncio.Task:
        """
        后台执行 notify()，立即返回

        任务持有强引用直到完成；任务内部的任何异常只记录日志
        """
        task = asyncio.create_task(self._notify_safely(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """等待所有后台通知完成（测试和关闭时使用）"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _notify_safely(self, *args, **kwargs) -> Optional[DeliveryReport]:
        try:
            return await self.notify(*args, **kwargs)
        except Exception as e:
            logger.exception(f"[Dispatcher] 后台通知异常: {e}")
            return None

    async def _render(self, document: dict) -> Optional[bytes]:
        try:
            return await self.renderer.render_card(document)
        except asyncio.TimeoutError:
            error = "timeout"
        except Exception as e:
            error = str(e) or type(e).__name__

        log_event(
            logger,
            logging.WARNING,
            "notification.render_failed",
            f"[Dispatcher] 卡片渲染失败，改发文本: {error}",
            doc_type=document.get("doc_type"),
            document_id=document.get("id"),
            error=error,
        )
        return None

    async def _deliver(
        self,
        adapter: ChannelAdapter,
        channel: str,
        chat_id,
        user: Optional[dict],
        message: str,
        card: Optional[bytes],
        filename: str,
        keyboard: Optional[dict],
    ) -> DeliveryAttempt:
        user_id = user.get("id") if user else None
        username = user.get("username") if user else None

        async def send() -> bool:
            if card is not None and adapter.supports_media:
                try:
                    await adapter.send_image(
                        chat_id,
                        card,
                        filename,
                        caption=message[:CAPTION_MAX_LENGTH],
                        keyboard=keyboard,
                    )
                    return True
                except Exception as e:
                    logger.warning(f"[Dispatcher] {channel} 卡片发送失败，改发文本: {e}")
            await adapter.send_text(chat_id, message, keyboard=keyboard)
            return False

        try:
            via_card = await asyncio.wait_for(send(), timeout=self.timeout)
            return DeliveryAttempt(channel, user_id, username, ok=True, via_card=via_card)
        except asyncio.TimeoutError:
            error = "timeout"
        except Exception as e:
            error = str(e) or type(e).__name__

        log_event(
            logger,
            logging.WARNING,
            "notification.delivery_failed",
            f"[Dispatcher] 投递失败: {channel} -> {username or chat_id}: {error}",
            channel=channel,
            user_id=user_id,
            username=username,
            error=error,
        )
        return DeliveryAttempt(channel, user_id, username, ok=False, error=error)


# 全局单例
notification_dispatcher = NotificationDispatcher()
