# app/api/deps.py
# 接口依赖
#
# 功能说明：
# 1. 服务实例依赖（测试时通过 app.dependency_overrides 替换）
# 2. 当前用户：从 X-Username 请求头解析
# 3. 管理员校验
#
# 使用方法：
#   @router.get("/me")
#   async def me(current_user: dict = Depends(get_current_user)):
#       ...

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.notifications.renderer import CardRenderer, card_renderer
from app.services import (
    DocumentService,
    UserService,
    WarehouseService,
    document_service,
    user_service,
    warehouse_service,
)
from app.workers import WorkerManager, worker_manager


def get_document_service() -> DocumentService:
    return document_service


def get_user_service() -> UserService:
    return user_service


def get_warehouse_service() -> WarehouseService:
    return warehouse_service


def get_worker_manager() -> WorkerManager:
    return worker_manager


def get_card_renderer() -> CardRenderer:
    return card_renderer


async def get_current_user(
    x_username: Optional[str] = Header(None),
    users: UserService = Depends(get_user_service),
) -> dict:
    """
    获取当前用户

    Raises:
        HTTPException: 缺少请求头或用户不存在时返回 401
    """
    if not x_username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="缺少 X-Username 请求头",
        )

    user = await users.get_by_username(x_username)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="用户不存在",
        )
    return user


async def get_current_admin_user(current_user: dict = Depends(get_current_user)) -> dict:
    """
    获取当前管理员

    Raises:
        HTTPException: 不是管理员时返回 403
    """
    if current_user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="需要管理员权限",
        )
    return current_user
