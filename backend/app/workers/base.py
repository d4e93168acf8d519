# app/workers/base.py
# Worker 基类
#
# 定义所有 Worker 的通用接口和行为

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional
from dataclasses import dataclass, field
from datetime import datetime


class WorkerStatus(str, Enum):
    """Worker 状态"""
    STOPPED = "stopped"      # 已停止
    STARTING = "starting"    # 启动中
    RUNNING = "running"      # 运行中
    STOPPING = "stopping"    # 停止中
    ERROR = "error"          # 错误


@dataclass
class WorkerInfo:
    """Worker 运行信息"""
    worker_type: str                        # Worker 类型 (telegram / bale)
    name: str                               # 显示名称
    status: WorkerStatus                    # 当前状态
    started_at: Optional[datetime] = None   # 启动时间
    error_message: Optional[str] = None     # 错误信息
    extra: dict = field(default_factory=dict)  # 额外信息（如已处理的更新数）

    def to_dict(self) -> dict:
        return {
            "worker_type": self.worker_type,
            "name": self.name,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "error_message": self.error_message,
            **self.extra,
        }


class BaseWorker(ABC):
    """
    Worker 基类

    所有后台 Worker 都应继承此类并实现抽象方法。
    Worker 在主进程的事件循环里以 asyncio 任务运行。

    Worker 类型：
    - telegram: Telegram Bot 长轮询
    - bale: Bale Bot 长轮询

    使用方法：
        class BaleBotWorker(BotWorker):
            worker_type = "bale"
            name = "Bale Bot"

            async def start(self, config: dict) -> bool:
                ...
    """

    # 子类必须定义
    worker_type: str = ""           # Worker 类型标识
    name: str = ""                  # Worker 名称
    description: str = ""           # Worker 描述

    def __init__(self):
        self._status: WorkerStatus = WorkerStatus.STOPPED
        self._started_at: Optional[datetime] = None
        self._error_message: Optional[str] = None

    @abstractmethod
    async def start(self, config: dict) -> bool:
        """
        启动 Worker

        Args:
            config: Worker 配置（如 token）

        Returns:
            bool: 是否成功启动
        """
        pass

    @abstractmethod
    async def stop(self) -> bool:
        """
        停止 Worker

        Returns:
            bool: 是否成功停止
        """
        pass

    @abstractmethod
    async def test_connection(self, config: dict) -> tuple[bool, str]:
        """
        测试连接

        Returns:
            tuple[bool, str]: (是否成功, 消息)
        """
        pass

    def get_status(self) -> WorkerStatus:
        """获取当前状态"""
        return self._status

    def get_info(self) -> WorkerInfo:
        """获取 Worker 信息"""
        return WorkerInfo(
            worker_type=self.worker_type,
            name=self.name,
            status=self._status,
            started_at=self._started_at,
            error_message=self._error_message,
        )

    def _set_running(self) -> None:
        self._status = WorkerStatus.RUNNING
        self._started_at = datetime.now()
        self._error_message = None

    def _set_stopped(self) -> None:
        self._status = WorkerStatus.STOPPED
        self._started_at = None

    def _set_error(self, message: str) -> None:
        self._status = WorkerStatus.ERROR
        self._error_message = message

    @classmethod
    def get_required_config_fields(cls) -> list[str]:
        """
        获取必需的配置字段

        子类可以重写此方法来定义必需的配置字段
        """
        return []

    @classmethod
    def validate_config(cls, config: dict) -> tuple[bool, str]:
        """
        验证配置

        Returns:
            tuple[bool, str]: (是否有效, 错误消息)
        """
        required = cls.get_required_config_fields()
        missing = [f for f in required if not config.get(f)]

        if missing:
            return False, f"缺少必需配置: {', '.join(missing)}"

        return True, ""
