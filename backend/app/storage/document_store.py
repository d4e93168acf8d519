# app/storage/document_store.py
# JSON 文档库
#
# 功能说明：
# 1. 单文件 JSON 文档库：每种实体一个数组 + 一个 settings 对象
# 2. 读全部 / 写全部：每次修改都读取整个库、内存中修改、整体写回
# 3. 进程内单写者：所有修改在 asyncio.Lock 内完成（读 → 改 → 写），
#    HTTP 请求和机器人轮询并发写入时不会互相覆盖
# 4. 每次写入 version + 1，写入先落临时文件再 os.replace，保证文件完整
# 5. 加载时自动修复：集合缺失或格式错误 → 空数组；users 为空 → 默认管理员
#
# 使用方法：
#   from app.storage import document_store
#
#   # 只读快照
#   data = await document_store.read()
#
#   # 修改（读-改-写在同一个临界区内）
#   async with document_store.transaction() as data:
#       data["orders"].append(order)

import os
import copy
import json
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


# 实体集合（数组）
COLLECTIONS = (
    "orders",
    "exit_permits",
    "warehouse_items",
    "warehouse_transactions",
    "users",
)

# 单据类型 → 所在集合
DOCUMENT_COLLECTIONS = {
    "payment": "orders",
    "exit_permit": "exit_permits",
    "bijak": "warehouse_transactions",
    "receipt": "warehouse_transactions",
}

DEFAULT_ADMIN = {
    "id": "1",
    "username": "admin",
    "password": "123",
    "full_name": "مدیر سیستم",
    "role": "admin",
    "receive_notifications": True,
}


def default_settings() -> dict:
    """settings 对象的默认值"""
    return {
        "current_tracking_number": 1000,
        "current_exit_permit_number": 1000,
        "warehouse_sequences": {},
        "receipt_sequences": {},
        "default_company": "",
        "companies": [],
        "role_permissions": {},
        "fiscal_years": [],
        "active_fiscal_year_id": None,
        "telegram_bot_token": "",
        "bale_bot_token": "",
        "exit_permit_notification_groups": {},
    }


def empty_store() -> dict:
    data = {"version": 0, "settings": default_settings()}
    for name in COLLECTIONS:
        data[name] = []
    return data


def sanitize(raw) -> tuple[dict, list[str]]:
    """
    把磁盘上读到的任意内容修复成合法的文档库结构

    Args:
        raw: json.load 的结果（可能是任意类型）

    Returns:
        tuple[dict, list[str]]: (修复后的数据, 修复项列表)
    """
    repairs: list[str] = []

    if not isinstance(raw, dict):
        return _with_default_admin(empty_store(), ["root"])

    data = dict(raw)

    version = data.get("version")
    if not isinstance(version, int) or version < 0:
        data["version"] = 0

    # settings：缺失的键补默认值，类型不对的整体重置
    stored = data.get("settings")
    if not isinstance(stored, dict):
        if stored is not None:
            repairs.append("settings")
        stored = {}
    merged = default_settings()
    merged.update(stored)
    data["settings"] = merged

    for name in COLLECTIONS:
        value = data.get(name)
        if value is None:
            data[name] = []
            continue
        if not isinstance(value, list):
            repairs.append(name)
            data[name] = []
            continue
        # 丢弃数组中不是对象的元素
        cleaned = [item for item in value if isinstance(item, dict)]
        if len(cleaned) != len(value):
            repairs.append(name)
        data[name] = cleaned

    return _with_default_admin(data, repairs)


def _with_default_admin(data: dict, repairs: list[str]) -> tuple[dict, list[str]]:
    if not data["users"]:
        data["users"] = [dict(DEFAULT_ADMIN)]
        repairs.append("users:default_admin")
    return data, repairs


class JsonDocumentStore:
    """
    JSON 文档库

    一个实例对应一个文件；同一进程内对同一文件只应创建一个实例，
    否则锁无法覆盖所有写入者。
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.DATA_FILE)
        self._lock = asyncio.Lock()

    # ==================== 文件读写（在线程中执行） ====================

    def _load(self) -> dict:
        if not self.path.exists():
            logger.info(f"[DocumentStore] 文档库不存在，使用空库: {self.path}")
            data, _ = sanitize({})
            return data

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"[DocumentStore] 文档库无法解析，已重置为空库: {e}")
            raw = None

        data, repairs = sanitize(raw)
        if repairs:
            logger.warning(
                f"[DocumentStore] 加载时修复了 {len(repairs)} 处数据",
                extra={"extra_data": {"event": "store.sanitized", "repairs": repairs}},
            )
        return data

    def _dump(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(data, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)

    # ==================== 对外接口 ====================

    async def read(self) -> dict:
        """
        读取整个文档库的快照

        返回的是独立副本，修改它不会影响磁盘；需要修改请使用 transaction()
        """
        async with self._lock:
            return await asyncio.to_thread(self._load)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[dict]:
        """
        读-改-写临界区

        with 块内对 data 的修改在正常退出时整体写回；
        块内抛出异常时不写入，磁盘保持原样。
        """
        async with self._lock:
            data = await asyncio.to_thread(self._load)
            before = copy.deepcopy(data)
            yield data
            if data != before:
                data["version"] = before["version"] + 1
                await asyncio.to_thread(self._dump, data)

    async def get_version(self) -> int:
        data = await self.read()
        return data["version"]


# 全局单例
document_store = JsonDocumentStore()
