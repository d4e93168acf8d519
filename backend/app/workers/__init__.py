# app/workers/__init__.py
# Worker Layer - 后台任务
#
# Worker 是长期运行的后台任务，负责：
# 1. 通过 Bot API 长轮询接收聊天消息
# 2. 交给会话引擎处理并回复
# 3. 作为通知分发器的发送渠道

from app.workers.base import BaseWorker, WorkerInfo, WorkerStatus
from app.workers.manager import WorkerManager, worker_manager
from app.workers.bot_worker import BotWorker, BotUpdateHandler, TelegramBotWorker, BaleBotWorker

# 注册 Worker 类型
worker_manager.register_worker_type("telegram", TelegramBotWorker)
worker_manager.register_worker_type("bale", BaleBotWorker)

__all__ = [
    "BaseWorker",
    "WorkerInfo",
    "WorkerStatus",
    "WorkerManager",
    "worker_manager",
    "BotWorker",
    "BotUpdateHandler",
    "TelegramBotWorker",
    "BaleBotWorker",
]
