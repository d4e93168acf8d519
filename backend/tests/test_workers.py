# tests/test_workers.py
# 机器人 Worker 与 Worker 管理器测试
#
# 运行方式：
#   cd backend
#   pytest tests/test_workers.py -v

import asyncio

import pytest

from app.notifications.dispatcher import NotificationDispatcher
from app.workers import BaseWorker, BotUpdateHandler, TelegramBotWorker, WorkerManager, WorkerStatus


class FakeBotClient:
    """按批次返回预置更新的 Bot API 客户端"""

    name = "telegram"
    supports_media = True

    def __init__(self, batches: list[list[dict]] = None):
        self.batches = list(batches or [])
        self.token = ""
        self.sent: list[tuple] = []
        self.answered: list[str] = []
        self.offsets: list = []

    def configure(self, token: str) -> None:
        self.token = token

    async def get_updates(self, offset=None, poll_timeout: int = 0) -> list[dict]:
        self.offsets.append(offset)
        if self.batches:
            return self.batches.pop(0)
        return []

    async def send_text(self, chat_id, text, keyboard=None) -> dict:
        self.sent.append((chat_id, text, keyboard))
        return {"ok": True}

    async def answer_callback(self, callback_query_id, text=None) -> dict:
        self.answered.append(callback_query_id)
        return {"ok": True}


def message_update(update_id: int, chat_id, text: str) -> dict:
    return {"update_id": update_id, "message": {"chat": {"id": chat_id}, "text": text}}


def callback_update(update_id: int, chat_id, data: str) -> dict:
    return {
        "update_id": update_id,
        "callback_query": {"id": f"cb-{update_id}", "data": data, "message": {"chat": {"id": chat_id}}},
    }


@pytest.fixture
def make_worker(make_engine, store, fake_renderer):
    """创建使用假客户端的 Telegram Worker"""
    def _make(batches=None):
        client = FakeBotClient(batches)
        dispatcher = NotificationDispatcher(store=store, renderer=fake_renderer)
        worker = TelegramBotWorker(
            client=client,
            engine=make_engine("telegram"),
            dispatcher=dispatcher,
            poll_timeout=0,
            poll_interval=0.01,
        )
        return worker, client, dispatcher
    return _make


class TestBotUpdateHandler:

    def test_duplicate_detection(self, make_engine):
        handler = BotUpdateHandler(FakeBotClient(), make_engine())
        assert handler.is_duplicate(1) is False
        assert handler.is_duplicate(1) is True
        assert handler.is_duplicate(2) is False

    def test_expired_entries_cleared(self, make_engine):
        handler = BotUpdateHandler(FakeBotClient(), make_engine(), dedup_ttl=-1)
        assert handler.is_duplicate(1) is False
        assert handler.is_duplicate(1) is False

    @pytest.mark.asyncio
    async def test_message_reply_sent(self, make_engine):
        client = FakeBotClient()
        handler = BotUpdateHandler(client, make_engine())

        reply = await handler.handle_update(message_update(1, 1005, "/start"))

        assert "Sales User" in reply.text
        assert client.sent == [(1005, reply.text, reply.keyboard)]

    @pytest.mark.asyncio
    async def test_callback_answered(self, make_engine):
        client = FakeBotClient()
        handler = BotUpdateHandler(client, make_engine())

        await handler.handle_update(callback_update(2, 1002, "approve:payment:missing"))

        assert client.answered == ["cb-2"]
        assert len(client.sent) == 1

    @pytest.mark.asyncio
    async def test_updates_without_text_ignored(self, make_engine):
        client = FakeBotClient()
        handler = BotUpdateHandler(client, make_engine())

        assert await handler.handle_update({"update_id": 3, "message": {"chat": {"id": 1005}}}) is None
        assert await handler.handle_update({"update_id": 4, "edited_message": {}}) is None
        assert client.sent == []


class TestBotWorker:

    @pytest.mark.asyncio
    async def test_poll_once_advances_offset(self, make_worker):
        worker, client, _ = make_worker()
        await worker.start({"token": "t"})
        await worker.stop()

        # 直接驱动一次轮询
        client.batches = [[message_update(20, 555, "hi"), message_update(21, 1005, "/start")]]
        count = await worker.poll_once()

        assert count == 2
        assert worker._offset == 22
        assert worker.get_info().extra["offset"] == 22
        assert client.sent[-2][1].startswith("⛔")

    @pytest.mark.asyncio
    async def test_duplicate_updates_handled_once(self, make_worker):
        worker, client, _ = make_worker()
        await worker.start({"token": "t"})
        await worker.stop()

        client.batches = [[message_update(30, 1005, "/start")], [message_update(30, 1005, "/start")]]
        await worker.poll_once()
        await worker.poll_once()

        assert len(client.sent) == 1

    @pytest.mark.asyncio
    async def test_failing_update_does_not_stop_batch(self, make_worker):
        worker, client, _ = make_worker()
        await worker.start({"token": "t"})
        await worker.stop()

        async def broken_send(chat_id, text, keyboard=None):
            if chat_id == 1005:
                raise ConnectionError("send failed")
            client.sent.append((chat_id, text, keyboard))

        client.send_text = broken_send
        client.batches = [[message_update(40, 1005, "/start"), message_update(41, 1002, "/start")]]

        assert await worker.poll_once() == 2
        assert [s[0] for s in client.sent] == [1002]
        assert worker._offset == 42

    @pytest.mark.asyncio
    async def test_start_registers_channel_and_polls(self, make_worker):
        worker, client, dispatcher = make_worker([[message_update(50, 1005, "/start")]])

        assert await worker.start({"token": "secret"}) is True
        assert worker.get_status() == WorkerStatus.RUNNING
        assert client.token == "secret"
        assert dispatcher.get_channel("telegram") is client

        for _ in range(100):
            if client.sent:
                break
            await asyncio.sleep(0.01)
        assert client.sent
        assert client.offsets[0] is None

        assert await worker.stop() is True
        assert worker.get_status() == WorkerStatus.STOPPED
        assert dispatcher.channels == []

    @pytest.mark.asyncio
    async def test_start_without_token(self, make_worker):
        worker, _, dispatcher = make_worker()

        assert await worker.start({}) is False
        assert worker.get_status() == WorkerStatus.ERROR
        assert "token" in worker.get_info().error_message
        assert dispatcher.channels == []


class FakeWorker(BaseWorker):
    """不联网的 Worker"""

    worker_type = "fake_a"
    name = "Fake"
    started_with: list[dict] = []

    @classmethod
    def get_required_config_fields(cls) -> list[str]:
        return ["token"]

    async def start(self, config: dict) -> bool:
        FakeWorker.started_with.append(config)
        self._set_running()
        return True

    async def stop(self) -> bool:
        self._set_stopped()
        return True

    async def test_connection(self, config: dict) -> tuple[bool, str]:
        return True, "连接成功"


class FailingWorker(FakeWorker):

    async def start(self, config: dict) -> bool:
        self._set_error("bad token")
        return False


@pytest.fixture
def manager(write_store):
    from app.storage.document_store import JsonDocumentStore

    FakeWorker.started_with = []
    path = write_store({"settings": {"fake_a_bot_token": " token-a ", "failing_bot_token": "x"}}, name="mgr.json")
    manager = WorkerManager(store=JsonDocumentStore(path), restart_delay=0)
    manager.register_worker_type("fake_a", FakeWorker)
    manager.register_worker_type("fake_b", FakeWorker)
    manager.register_worker_type("failing", FailingWorker)
    return manager


class TestWorkerManager:

    @pytest.mark.asyncio
    async def test_token_from_store_settings(self, manager):
        assert await manager.resolve_token("fake_a") == "token-a"
        assert await manager.resolve_token("fake_b") == ""

    @pytest.mark.asyncio
    async def test_start_all_enabled_skips_missing_tokens(self, manager):
        results = await manager.start_all_enabled()

        assert results["fake_a"] == (True, "Worker 已启动")
        assert results["failing"] == (False, "bad token")
        assert "fake_b" not in results
        assert FakeWorker.started_with == [{"token": "token-a"}]

    @pytest.mark.asyncio
    async def test_start_twice(self, manager):
        assert (await manager.start("fake_a"))[0] is True
        assert await manager.start("fake_a") == (False, "Worker 已在运行中")

    @pytest.mark.asyncio
    async def test_start_unknown_and_unconfigured(self, manager):
        assert (await manager.start("nope"))[0] is False
        assert await manager.start("fake_b") == (False, "未配置 Token")

    @pytest.mark.asyncio
    async def test_restart(self, manager):
        await manager.start("fake_a")
        success, _ = await manager.restart("fake_a")

        assert success
        assert manager.get_status("fake_a").status == WorkerStatus.RUNNING
        assert len(FakeWorker.started_with) == 2

    @pytest.mark.asyncio
    async def test_stop(self, manager):
        assert (await manager.stop("fake_a"))[0] is False
        await manager.start("fake_a")
        assert (await manager.stop("fake_a"))[0] is True
        assert manager.get_status("fake_a").status == WorkerStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_all(self, manager):
        await manager.start_all_enabled()
        await manager.stop_all()
        assert all(info.status == WorkerStatus.STOPPED for info in manager.get_all_status())

    def test_status_of_idle_and_unknown_types(self, manager):
        assert manager.get_status("fake_b").status == WorkerStatus.STOPPED
        assert manager.get_status("nope") is None
        assert [info.worker_type for info in manager.get_all_status()] == ["fake_a", "fake_b", "failing"]

    @pytest.mark.asyncio
    async def test_connection_check(self, manager):
        assert await manager.test_connection("fake_a", {}) == (False, "缺少必需配置: token")
        assert await manager.test_connection("fake_a", {"token": "x"}) == (True, "连接成功")
        assert (await manager.test_connection("nope", {"token": "x"}))[0] is False
