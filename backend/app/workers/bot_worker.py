# app/workers/bot_worker.py
# 聊天机器人 Worker（Telegram / Bale 长轮询）
#
# 功能说明：
# 1. 在主进程事件循环中以 asyncio 任务运行 getUpdates 长轮询
# 2. 记录 offset，已确认的更新不会重复拉取
# 3. update_id 去重（重启后平台可能重发最近的更新）
# 4. 文字消息 → ConversationEngine.handle_message
#    按钮回调 → ConversationEngine.handle_callback
# 5. 启动时把自己的客户端注册为通知渠道，停止时注销
#
# 单条更新处理失败只记录日志，不影响后续更新；
# 拉取失败按 BOT_POLL_INTERVAL 间隔重试。

import asyncio
import time
from typing import Optional

from app.adapters.bot_api import BOT_CLIENTS, BotApiClient
from app.bot.engine import BotReply, ConversationEngine
from app.core.config import settings
from app.core.logging import get_logger
from app.notifications.dispatcher import NotificationDispatcher, notification_dispatcher
from app.workers.base import BaseWorker, WorkerInfo, WorkerStatus

logger = get_logger(__name__)


class BotUpdateHandler:
    """
    更新处理器

    把平台更新交给会话引擎，并把回复发回同一个聊天
    """

    def __init__(self, client: BotApiClient, engine: ConversationEngine, dedup_ttl: int = 300):
        self.client = client
        self.engine = engine
        # 更新去重：update_id → 处理时间
        self._processed_updates: dict[int, float] = {}
        self._dedup_ttl = dedup_ttl

    def is_duplicate(self, update_id: int) -> bool:
        """
        检查更新是否重复

        Args:
            update_id: 平台更新 ID

        Returns:
            bool: 是否重复
        """
        now = time.time()

        # 清理过期的记录
        expired_keys = [
            k for k, v in self._processed_updates.items()
            if now - v > self._dedup_ttl
        ]
        for k in expired_keys:
            del self._processed_updates[k]

        if update_id in self._processed_updates:
            return True

        self._processed_updates[update_id] = now
        return False

    async def handle_update(self, update: dict) -> Optional[BotReply]:
        """
        处理一条更新

        Returns:
            BotReply 或 None（重复、无文字或不支持的更新类型）
        """
        update_id = update.get("update_id")
        if update_id is not None and self.is_duplicate(update_id):
            logger.warning(f"[{self.client.name}] 跳过重复更新: {update_id}")
            return None

        if "callback_query" in update:
            return await self._handle_callback(update["callback_query"])

        message = update.get("message") or {}
        text = message.get("text")
        chat_id = (message.get("chat") or {}).get("id")
        if not text or chat_id is None:
            return None

        logger.info(f"[{self.client.name}] 收到消息 {chat_id}: {text[:50]}")
        reply = await self.engine.handle_message(chat_id, text)
        await self.client.send_text(chat_id, reply.text, reply.keyboard)
        return reply

    async def _handle_callback(self, callback: dict) -> Optional[BotReply]:
        chat_id = ((callback.get("message") or {}).get("chat") or {}).get("id")
        if chat_id is None:
            chat_id = (callback.get("from") or {}).get("id")
        if chat_id is None:
            return None

        logger.info(f"[{self.client.name}] 收到按钮回调 {chat_id}: {callback.get('data')}")
        reply = await self.engine.handle_callback(chat_id, callback.get("data", ""))
        await self.client.answer_callback(callback["id"])
        await self.client.send_text(chat_id, reply.text, reply.keyboard)
        return reply


class BotWorker(BaseWorker):
    """
    机器人 Worker

    子类只需指定 worker_type（对应 BOT_CLIENTS 中的客户端）
    """

    description = "Bot API 长轮询，处理聊天消息并作为通知渠道"

    def __init__(
        self,
        client: Optional[BotApiClient] = None,
        engine: Optional[ConversationEngine] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        poll_timeout: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        super().__init__()
        self.client = client
        self.engine = engine
        self.dispatcher = dispatcher or notification_dispatcher
        self.poll_timeout = settings.BOT_POLL_TIMEOUT if poll_timeout is None else poll_timeout
        self.poll_interval = settings.BOT_POLL_INTERVAL if poll_interval is None else poll_interval
        self.handler: Optional[BotUpdateHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._offset: Optional[int] = None
        self._handled = 0

    @classmethod
    def get_required_config_fields(cls) -> list[str]:
        return ["token"]

    def _build_client(self, token: str) -> BotApiClient:
        if self.client is None:
            self.client = BOT_CLIENTS[self.worker_type](token=token)
        else:
            self.client.configure(token)
        return self.client

    async def start(self, config: dict) -> bool:
        valid, error = self.validate_config(config)
        if not valid:
            self._set_error(error)
            return False

        if self._task and not self._task.done():
            logger.warning(f"[{self.name}] 已在运行中")
            return True

        self._status = WorkerStatus.STARTING
        client = self._build_client(config["token"])
        if self.engine is None:
            self.engine = ConversationEngine(self.worker_type)
        self.handler = BotUpdateHandler(client, self.engine)

        self.dispatcher.register_channel(client, self.worker_type)
        self._task = asyncio.create_task(self._poll_loop(), name=f"bot-worker-{self.worker_type}")
        self._set_running()
        logger.info(f"[{self.name}] 已启动")
        return True

    async def stop(self) -> bool:
        logger.info(f"[{self.name}] 正在停止...")
        self._status = WorkerStatus.STOPPING

        self.dispatcher.unregister_channel(self.worker_type)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._set_stopped()
        logger.info(f"[{self.name}] 已停止")
        return True

    async def test_connection(self, config: dict) -> tuple[bool, str]:
        token = config.get("token")
        if not token:
            return False, "缺少 token"

        try:
            client = BOT_CLIENTS[self.worker_type](token=token)
            success = await client.test_connection()
            if success:
                return True, "连接成功"
            return False, "连接失败，请检查 Token"
        except Exception as e:
            return False, str(e)

    def get_info(self) -> WorkerInfo:
        info = super().get_info()
        info.extra = {"offset": self._offset, "handled_updates": self._handled}
        return info

    # ==================== 轮询 ====================

    async def poll_once(self) -> int:
        """
        拉取并处理一批更新

        Returns:
            int: 本批更新数量
        """
        updates = await self.client.get_updates(self._offset, poll_timeout=self.poll_timeout)
        for update in updates:
            update_id = update.get("update_id")
            if update_id is not None:
                self._offset = max(self._offset or 0, update_id + 1)
            try:
                await self.handler.handle_update(update)
                self._handled += 1
            except Exception as e:
                logger.exception(f"[{self.name}] 处理更新失败 {update_id}: {e}")
        return len(updates)

    async def _poll_loop(self) -> None:
        while True:
            try:
                count = await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[{self.name}] 拉取更新失败: {e}")
                self._error_message = str(e)
                await asyncio.sleep(self.poll_interval)
                continue

            if count == 0 and self.poll_timeout == 0:
                await asyncio.sleep(self.poll_interval)


class TelegramBotWorker(BotWorker):
    worker_type = "telegram"
    name = "Telegram Bot"


class BaleBotWorker(BotWorker):
    worker_type = "bale"
    name = "Bale Bot"
