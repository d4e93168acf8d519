# app/workers/manager.py
# Worker 管理器
#
# 统一管理所有机器人 Worker 的生命周期：
# - 启动/停止/重启（/restart-bot 接口使用）
# - 状态查询
# - Token 解析：文档库 settings 中的 <type>_bot_token 优先，其次是环境变量

import asyncio
from typing import Optional, Type

from app.core.config import settings
from app.core.logging import get_logger
from app.storage.document_store import JsonDocumentStore, document_store
from app.workers.base import BaseWorker, WorkerInfo, WorkerStatus

logger = get_logger(__name__)

# 环境变量中的 Token
ENV_TOKENS = {
    "telegram": lambda: settings.TELEGRAM_BOT_TOKEN,
    "bale": lambda: settings.BALE_BOT_TOKEN,
}


class WorkerManager:
    """
    Worker 管理器

    使用方法：
        from app.workers import worker_manager

        # 启动所有已配置 Token 的机器人
        await worker_manager.start_all_enabled()

        # 修改 Token 后重启
        await worker_manager.restart("bale")

        # 获取状态
        info = worker_manager.get_status("bale")
    """

    def __init__(self, store: Optional[JsonDocumentStore] = None, restart_delay: float = 1.0):
        self.store = store or document_store
        self.restart_delay = restart_delay

        # Worker 类型注册表: worker_type -> Worker 类
        self._worker_types: dict[str, Type[BaseWorker]] = {}

        # 运行中的实例: worker_type -> Worker
        self._workers: dict[str, BaseWorker] = {}

    def register_worker_type(self, worker_type: str, worker_class: Type[BaseWorker]) -> None:
        """
        注册 Worker 类型

        Args:
            worker_type: 类型标识（如 'telegram', 'bale'）
            worker_class: Worker 类
        """
        self._worker_types[worker_type] = worker_class
        logger.debug(f"[WorkerManager] 注册 Worker 类型: {worker_type}")

    def get_worker_types(self) -> list[str]:
        """获取所有已注册的 Worker 类型"""
        return list(self._worker_types.keys())

    async def resolve_token(self, worker_type: str) -> str:
        snapshot = await self.store.read()
        token = snapshot["settings"].get(f"{worker_type}_bot_token") or ""
        if not token and worker_type in ENV_TOKENS:
            token = ENV_TOKENS[worker_type]() or ""
        return token.strip()

    async def start(self, worker_type: str) -> tuple[bool, str]:
        """
        启动指定类型的 Worker

        Returns:
            tuple[bool, str]: (是否成功, 消息)
        """
        if worker_type not in self._worker_types:
            return False, f"不支持的 Worker 类型: {worker_type}"

        current = self._workers.get(worker_type)
        if current and current.get_status() == WorkerStatus.RUNNING:
            return False, "Worker 已在运行中"

        token = await self.resolve_token(worker_type)
        if not token:
            return False, "未配置 Token"

        worker = self._worker_types[worker_type]()
        try:
            success = await worker.start({"token": token})
        except Exception as e:
            logger.error(f"[WorkerManager] 启动 Worker 失败: {worker_type}: {e}")
            return False, str(e)

        if not success:
            message = worker.get_info().error_message or "启动失败"
            return False, message

        self._workers[worker_type] = worker
        logger.info(f"[WorkerManager] Worker 已启动: {worker.name or worker_type}")
        return True, "Worker 已启动"

    async def stop(self, worker_type: str) -> tuple[bool, str]:
        """
        停止指定类型的 Worker

        Returns:
            tuple[bool, str]: (是否成功, 消息)
        """
        worker = self._workers.pop(worker_type, None)
        if worker is None:
            return False, "Worker 未在运行"

        try:
            await worker.stop()
        except Exception as e:
            logger.error(f"[WorkerManager] 停止 Worker 失败: {worker_type}: {e}")
            return False, str(e)

        logger.info(f"[WorkerManager] Worker 已停止: {worker_type}")
        return True, "Worker 已停止"

    async def restart(self, worker_type: str) -> tuple[bool, str]:
        """
        重启指定类型的 Worker（Token 修改后调用）

        Returns:
            tuple[bool, str]: (是否成功, 消息)
        """
        await self.stop(worker_type)
        await asyncio.sleep(self.restart_delay)
        return await self.start(worker_type)

    async def start_all_enabled(self) -> dict[str, tuple[bool, str]]:
        """
        启动所有已配置 Token 的 Worker

        Returns:
            dict: {worker_type: (success, message)}
        """
        results = {}
        for worker_type in self._worker_types:
            if not await self.resolve_token(worker_type):
                logger.info(f"[WorkerManager] 未配置 Token，跳过: {worker_type}")
                continue
            success, message = await self.start(worker_type)
            results[worker_type] = (success, message)
            if not success:
                logger.warning(f"[WorkerManager] 启动失败: {worker_type} - {message}")
        return results

    async def stop_all(self) -> None:
        """停止所有 Worker"""
        worker_types = list(self._workers.keys())

        for worker_type in worker_types:
            await self.stop(worker_type)

        logger.info(f"[WorkerManager] 已停止所有 Worker ({len(worker_types)} 个)")

    def get_status(self, worker_type: str) -> Optional[WorkerInfo]:
        """
        获取 Worker 状态

        Returns:
            WorkerInfo 或 None（未注册的类型）
        """
        worker = self._workers.get(worker_type)
        if worker is not None:
            return worker.get_info()
        worker_class = self._worker_types.get(worker_type)
        if worker_class is None:
            return None
        return WorkerInfo(
            worker_type=worker_type,
            name=worker_class.name or worker_type,
            status=WorkerStatus.STOPPED,
        )

    def get_all_status(self) -> list[WorkerInfo]:
        """获取所有已注册 Worker 的状态"""
        return [self.get_status(worker_type) for worker_type in self._worker_types]

    async def test_connection(self, worker_type: str, config: dict) -> tuple[bool, str]:
        """
        测试 Worker 连接

        Returns:
            tuple[bool, str]: (是否成功, 消息)
        """
        if worker_type not in self._worker_types:
            return False, f"不支持的 Worker 类型: {worker_type}"

        worker_class = self._worker_types[worker_type]

        valid, error = worker_class.validate_config(config)
        if not valid:
            return False, error

        try:
            worker = worker_class()
            return await worker.test_connection(config)
        except Exception as e:
            return False, str(e)


# 全局单例
worker_manager = WorkerManager()
