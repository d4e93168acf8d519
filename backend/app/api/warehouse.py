# app/api/warehouse.py
# 仓库 API
#
# - 物料维护（需要 can_manage_warehouse）
# - 库存查询：期初 + 入库 - 出库

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_user, get_user_service, get_warehouse_service
from app.core.exceptions import PermissionDenied
from app.schemas.warehouse import StockRow, WarehouseItemCreate
from app.services.user_service import UserService
from app.services.warehouse_service import WarehouseService

router = APIRouter(prefix="/api/warehouse", tags=["warehouse"])


async def require_warehouse_manager(
    current_user: dict = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
) -> dict:
    perms = await users.permissions_for(current_user)
    if not perms.get("can_manage_warehouse"):
        raise PermissionDenied(f"角色 {current_user.get('role')} 没有仓库管理权限")
    return current_user


@router.get("/stock", response_model=list[StockRow])
async def stock(
    company: Optional[str] = Query(None),
    warehouse: WarehouseService = Depends(get_warehouse_service),
    current_user: dict = Depends(get_current_user),
):
    return await warehouse.stock(company)


@router.get("/items")
async def list_items(
    company: Optional[str] = Query(None),
    warehouse: WarehouseService = Depends(get_warehouse_service),
    current_user: dict = Depends(get_current_user),
) -> list[dict[str, Any]]:
    return await warehouse.list_items(company)


@router.post("/items", status_code=201)
async def create_item(
    request: WarehouseItemCreate,
    warehouse: WarehouseService = Depends(get_warehouse_service),
    current_user: dict = Depends(require_warehouse_manager),
) -> dict[str, Any]:
    return await warehouse.create_item(request.model_dump())


@router.delete("/items/{item_id}", status_code=204)
async def delete_item(
    item_id: str,
    warehouse: WarehouseService = Depends(get_warehouse_service),
    current_user: dict = Depends(require_warehouse_manager),
):
    await warehouse.delete_item(item_id)
