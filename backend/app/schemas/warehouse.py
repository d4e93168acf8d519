# app/schemas/warehouse.py
# 仓库物料与库存模式

from typing import Optional

from pydantic import BaseModel, Field


class WarehouseItemCreate(BaseModel):
    """创建物料请求"""
    name: str = Field(..., min_length=1)
    code: str = ""
    unit: str = ""
    company: Optional[str] = None
    initial_quantity: float = 0


class StockRow(BaseModel):
    """单个物料的库存汇总"""
    item_id: str
    item_name: str
    company: str
    initial_quantity: float
    received: float           # 入库合计
    issued: float             # 出库合计（待审批 + 已审批）
    balance: float
