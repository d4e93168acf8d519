# app/services/warehouse_service.py
# 仓库服务
#
# 功能说明：
# 1. 物料维护
# 2. 库存计算：期初 + 入库单 - 出库单（待审批和已审批的出库单都占用库存，被驳回的不算）

from typing import Optional
from uuid import uuid4

from app.core.exceptions import DocumentNotFound
from app.core.logging import get_logger
from app.schemas.document import DocumentType
from app.storage.document_store import JsonDocumentStore, document_store
from app.workflow.chains import WarehouseStatus

logger = get_logger(__name__)


class WarehouseService:

    def __init__(self, store: Optional[JsonDocumentStore] = None):
        self.store = store or document_store

    async def list_items(self, company: Optional[str] = None) -> list[dict]:
        snapshot = await self.store.read()
        items = snapshot["warehouse_items"]
        if company is not None:
            items = [i for i in items if (i.get("company") or "") == company]
        return items

    async def create_item(self, fields: dict) -> dict:
        async with self.store.transaction() as data:
            company = fields.get("company")
            if company is None:
                company = data["settings"].get("default_company", "")
            item = {"id": uuid4().hex, **fields, "company": company}
            data["warehouse_items"].append(item)
        logger.info(f"[WarehouseService] 创建物料: {item['name']}")
        return item

    async def delete_item(self, item_id: str) -> None:
        async with self.store.transaction() as data:
            remaining = [i for i in data["warehouse_items"] if i.get("id") != item_id]
            if len(remaining) == len(data["warehouse_items"]):
                raise DocumentNotFound(f"物料不存在: {item_id}")
            data["warehouse_items"] = remaining
        logger.info(f"[WarehouseService] 删除物料: {item_id}")

    async def stock(self, company: Optional[str] = None) -> list[dict]:
        """
        计算库存

        出入库明细优先按 item_id 对应物料，没有 item_id 时按物料名称对应
        """
        snapshot = await self.store.read()

        rows: dict[str, dict] = {}
        by_name: dict[tuple[str, str], str] = {}
        for item in snapshot["warehouse_items"]:
            item_company = item.get("company") or ""
            if company is not None and item_company != company:
                continue
            initial = float(item.get("initial_quantity") or 0)
            rows[item["id"]] = {
                "item_id": item["id"],
                "item_name": item.get("name", ""),
                "company": item_company,
                "initial_quantity": initial,
                "received": 0.0,
                "issued": 0.0,
                "balance": initial,
            }
            by_name[(item_company, item.get("name", ""))] = item["id"]

        for tx in snapshot["warehouse_transactions"]:
            tx_company = tx.get("company") or ""
            if company is not None and tx_company != company:
                continue
            if tx.get("status") == WarehouseStatus.REJECTED:
                continue
            inbound = tx.get("doc_type") == DocumentType.RECEIPT.value
            for line in (tx.get("payload") or {}).get("items") or []:
                item_id = line.get("item_id") or by_name.get((tx_company, line.get("item_name", "")))
                row = rows.get(item_id)
                if row is None:
                    continue
                quantity = float(line.get("quantity") or 0)
                if inbound:
                    row["received"] += quantity
                    row["balance"] += quantity
                else:
                    row["issued"] += quantity
                    row["balance"] -= quantity

        return sorted(rows.values(), key=lambda r: r["item_name"])


# 全局单例
warehouse_service = WarehouseService()
