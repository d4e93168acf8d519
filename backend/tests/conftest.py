# tests/conftest.py
# Pytest 配置文件
#
# 功能：
# 1. 自动加载环境变量，文档库指向临时目录
# 2. 每个测试一个临时 JSON 文档库（预置各角色用户）
# 3. 假渠道、假渲染器、记录型通知分发器
# 4. API 测试客户端（通过 dependency_overrides 注入测试服务）

import os
import sys
import json
import asyncio
import tempfile
from typing import Optional

import pytest

# 将 backend 目录添加到 Python 路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# ==================== 环境配置 ====================

def pytest_configure(config):
    """Pytest 启动时配置"""
    from dotenv import load_dotenv
    load_dotenv()

    # 全局单例使用的文档库放到临时目录，测试不会写入仓库
    os.environ["DATA_FILE"] = os.path.join(tempfile.mkdtemp(prefix="approval-desk-"), "db.json")


# ==================== 测试数据 ====================

SEED_USERS = [
    {"id": "1", "username": "admin", "password": "123", "full_name": "مدیر سیستم", "role": "admin"},
    {"id": "2", "username": "fin", "password": "1", "full_name": "Fin User", "role": "financial",
     "telegram_chat_id": "1002", "bale_chat_id": "2002"},
    {"id": "3", "username": "mgr", "password": "1", "full_name": "Mgr User", "role": "manager",
     "telegram_chat_id": "1003", "bale_chat_id": "2003"},
    {"id": "4", "username": "ceo", "password": "1", "full_name": "Ceo User", "role": "ceo",
     "telegram_chat_id": "1004", "bale_chat_id": "2004"},
    {"id": "5", "username": "sales", "password": "1", "full_name": "Sales User", "role": "sales_manager",
     "telegram_chat_id": "1005", "bale_chat_id": "2005"},
    {"id": "6", "username": "factory", "password": "1", "full_name": "Factory User", "role": "factory_manager",
     "telegram_chat_id": "1006"},
    {"id": "7", "username": "keeper", "password": "1", "full_name": "Keeper User", "role": "warehouse_keeper",
     "telegram_chat_id": "1007"},
    {"id": "8", "username": "sechead", "password": "1", "full_name": "Security Head", "role": "security_head",
     "telegram_chat_id": "1008"},
    {"id": "9", "username": "guard", "password": "1", "full_name": "Guard User", "role": "security_guard",
     "telegram_chat_id": "1009"},
]


@pytest.fixture
def seed_users() -> list[dict]:
    return [dict(u) for u in SEED_USERS]


@pytest.fixture
def users_by_name(seed_users) -> dict[str, dict]:
    return {u["username"]: u for u in seed_users}


@pytest.fixture
def write_store(tmp_path):
    """写入一个文档库文件的工厂函数，返回文件路径"""
    def _write(data: dict, name: str = "db.json") -> str:
        path = tmp_path / name
        path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture
def store(write_store, seed_users):
    """预置用户的临时文档库"""
    from app.storage.document_store import JsonDocumentStore

    return JsonDocumentStore(write_store({"users": seed_users}))


# ==================== 假渠道 / 假渲染器 ====================

class FakeChannel:
    """记录所有发送内容的渠道"""

    def __init__(
        self,
        name: str,
        supports_media: bool = True,
        fail: bool = False,
        fail_media: bool = False,
        delay: float = 0,
    ):
        self.name = name
        self.supports_media = supports_media
        self.fail = fail
        self.fail_media = fail_media
        self.delay = delay
        self.sent: list[dict] = []

    async def send_text(self, chat_id, text, keyboard=None) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} unavailable")
        self.sent.append({"kind": "text", "chat_id": chat_id, "text": text, "keyboard": keyboard})
        return {"ok": True}

    async def send_image(self, chat_id, content, filename, caption="", keyboard=None) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} unavailable")
        if self.fail_media:
            raise ValueError("media rejected")
        self.sent.append({
            "kind": "image",
            "chat_id": chat_id,
            "filename": filename,
            "text": caption,
            "keyboard": keyboard,
        })
        return {"ok": True}


class FakeRenderer:
    """返回固定字节的渲染器"""

    CONTENT = b"%PDF-1.4 fake card"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.rendered: list[str] = []

    async def render_card(self, document: dict) -> bytes:
        if self.fail:
            raise RuntimeError("font missing")
        self.rendered.append(document.get("id"))
        return self.CONTENT

    async def render_pdf(self, document: dict) -> bytes:
        return await self.render_card(document)


class RecordingDispatcher:
    """只记录通知请求，不投递"""

    def __init__(self):
        self.calls: list[dict] = []

    def notify_in_background(self, targets, message, **kwargs) -> None:
        self.calls.append({"targets": list(targets), "message": message, **kwargs})

    async def wait_idle(self) -> None:
        pass


@pytest.fixture
def make_channel():
    """创建假渠道的工厂函数"""
    def _make(name: str, **kwargs) -> FakeChannel:
        return FakeChannel(name, **kwargs)
    return _make


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def failing_renderer() -> FakeRenderer:
    return FakeRenderer(fail=True)


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


# ==================== 服务 Fixtures ====================

@pytest.fixture
def documents(store, recorder):
    from app.services.document_service import DocumentService

    return DocumentService(store=store, dispatcher=recorder)


@pytest.fixture
def users(store):
    from app.services.user_service import UserService

    return UserService(store=store)


@pytest.fixture
def warehouse(store):
    from app.services.warehouse_service import WarehouseService

    return WarehouseService(store=store)


@pytest.fixture
def make_engine(documents, users, warehouse):
    """创建会话引擎的工厂函数"""
    from app.bot.engine import ConversationEngine
    from app.bot.session import InMemorySessionStore

    def _make(platform: str = "telegram", archive_limit: int = 10, max_length: int = 4000):
        return ConversationEngine(
            platform,
            documents=documents,
            users=users,
            warehouse=warehouse,
            sessions=InMemorySessionStore(),
            archive_limit=archive_limit,
            max_length=max_length,
        )
    return _make


@pytest.fixture
def payment_payload():
    def _make(amount: int = 1500000, payee: str = "Ali", description: str = "rent") -> dict:
        return {"amount": amount, "payee": payee, "description": description}
    return _make


# ==================== API 客户端 Fixtures ====================

@pytest.fixture
def worker_manager(store):
    from app.workers.manager import WorkerManager
    from app.workers.base import BaseWorker

    class FakeWorker(BaseWorker):
        worker_type = "fake"
        name = "Fake Bot"

        @classmethod
        def get_required_config_fields(cls) -> list[str]:
            return ["token"]

        async def start(self, config: dict) -> bool:
            self._set_running()
            return True

        async def stop(self) -> bool:
            self._set_stopped()
            return True

        async def test_connection(self, config: dict) -> tuple[bool, str]:
            return True, "连接成功"

    manager = WorkerManager(store=store, restart_delay=0)
    manager.register_worker_type("fake", FakeWorker)
    return manager


@pytest.fixture
def api_client(documents, users, warehouse, worker_manager, fake_renderer):
    """
    创建测试用 API 客户端

    不进入 TestClient 上下文，lifespan 不执行（不启动真实机器人）
    """
    from fastapi.testclient import TestClient
    from app.api import deps
    from app.main import app

    app.dependency_overrides[deps.get_document_service] = lambda: documents
    app.dependency_overrides[deps.get_user_service] = lambda: users
    app.dependency_overrides[deps.get_warehouse_service] = lambda: warehouse
    app.dependency_overrides[deps.get_worker_manager] = lambda: worker_manager
    app.dependency_overrides[deps.get_card_renderer] = lambda: fake_renderer

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    """按用户名生成请求头"""
    def _make(username: Optional[str]) -> dict:
        return {"X-Username": username} if username else {}
    return _make
