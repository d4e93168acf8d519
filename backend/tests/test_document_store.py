# tests/test_document_store.py
# JSON 文档库测试
#
# 运行方式：
#   cd backend
#   pytest tests/test_document_store.py -v

import json
import asyncio

import pytest

from app.storage.document_store import JsonDocumentStore, sanitize


class TestSanitize:
    """加载时的数据修复"""

    def test_non_dict_root_replaced(self):
        data, repairs = sanitize(["not", "a", "store"])
        assert "root" in repairs
        assert data["orders"] == []
        assert data["users"][0]["username"] == "admin"

    def test_non_list_collection_repaired(self):
        data, repairs = sanitize({"orders": "oops", "users": [{"id": "9", "username": "u"}]})
        assert data["orders"] == []
        assert "orders" in repairs

    def test_non_object_elements_dropped(self):
        data, repairs = sanitize({"exit_permits": [{"id": "a"}, 5, None], "users": [{"id": "9"}]})
        assert data["exit_permits"] == [{"id": "a"}]
        assert "exit_permits" in repairs

    def test_missing_settings_filled_with_defaults(self):
        data, _ = sanitize({"settings": {"default_company": "A"}})
        assert data["settings"]["default_company"] == "A"
        assert data["settings"]["current_tracking_number"] == 1000
        assert data["settings"]["warehouse_sequences"] == {}

    def test_default_admin_seeded(self):
        data, repairs = sanitize({})
        assert [u["username"] for u in data["users"]] == ["admin"]
        assert data["users"][0]["password"] == "123"
        assert "users:default_admin" in repairs

    def test_existing_users_kept(self):
        data, repairs = sanitize({"users": [{"id": "5", "username": "x"}]})
        assert [u["username"] for u in data["users"]] == ["x"]
        assert "users:default_admin" not in repairs


class TestJsonDocumentStore:
    """读写与事务"""

    @pytest.mark.asyncio
    async def test_missing_file_reads_empty_store(self, tmp_path):
        store = JsonDocumentStore(str(tmp_path / "missing.json"))
        data = await store.read()

        assert data["version"] == 0
        assert data["users"][0]["username"] == "admin"
        # 只读不会创建文件
        assert not (tmp_path / "missing.json").exists()

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty_store(self, tmp_path):
        path = tmp_path / "db.json"
        path.write_text("{not json", encoding="utf-8")
        data = await JsonDocumentStore(str(path)).read()
        assert data["orders"] == []
        assert data["users"][0]["username"] == "admin"

    @pytest.mark.asyncio
    async def test_transaction_writes_and_bumps_version(self, tmp_path):
        path = tmp_path / "db.json"
        store = JsonDocumentStore(str(path))

        async with store.transaction() as data:
            data["orders"].append({"id": "a", "number": 1001})

        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert on_disk["version"] == 1
        assert on_disk["orders"] == [{"id": "a", "number": 1001}]
        assert await store.get_version() == 1

    @pytest.mark.asyncio
    async def test_transaction_without_changes_does_not_write(self, tmp_path):
        path = tmp_path / "db.json"
        store = JsonDocumentStore(str(path))

        async with store.transaction() as data:
            assert data["orders"] == []

        assert not path.exists()

    @pytest.mark.asyncio
    async def test_transaction_error_leaves_file_untouched(self, tmp_path):
        path = tmp_path / "db.json"
        store = JsonDocumentStore(str(path))
        async with store.transaction() as data:
            data["orders"].append({"id": "a"})
        before = path.read_text(encoding="utf-8")

        with pytest.raises(RuntimeError):
            async with store.transaction() as data:
                data["orders"].append({"id": "b"})
                raise RuntimeError("boom")

        assert path.read_text(encoding="utf-8") == before
        # 锁已释放，后续事务可以继续
        async with store.transaction() as data:
            data["orders"].append({"id": "c"})
        assert [o["id"] for o in (await store.read())["orders"]] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_read_returns_independent_copy(self, store):
        snapshot = await store.read()
        snapshot["orders"].append({"id": "ghost"})
        assert (await store.read())["orders"] == []

    @pytest.mark.asyncio
    async def test_concurrent_creations_get_unique_numbers(self, documents, users_by_name, payment_payload):
        """并发创建不会拿到相同编号"""
        sales = users_by_name["sales"]
        created = await asyncio.gather(*[
            documents.create_document("payment", payment_payload(amount=1000 + i), sales)
            for i in range(20)
        ])

        numbers = sorted(doc["number"] for doc in created)
        assert numbers == list(range(1001, 1021))

        snapshot = await documents.store.read()
        assert len(snapshot["orders"]) == 20
        assert snapshot["settings"]["current_tracking_number"] == 1020
