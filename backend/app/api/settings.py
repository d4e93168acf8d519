# app/api/settings.py
# 系统设置 API（仅管理员）
#
# 设置保存在文档库的 settings 中：编号计数器、公司、财年、角色权限、机器人 Token 等。
# 修改机器人 Token 后需要调用 POST /api/restart-bot 才会生效。

from typing import Any

from fastapi import APIRouter, Depends

from app.api.deps import get_current_admin_user, get_user_service
from app.core.logging import get_logger
from app.services.user_service import UserService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/settings",
    tags=["settings"],
    dependencies=[Depends(get_current_admin_user)],
)


@router.get("")
async def get_settings(users: UserService = Depends(get_user_service)) -> dict[str, Any]:
    return await users.get_settings()


@router.put("")
async def update_settings(
    changes: dict[str, Any],
    users: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    """
    修改设置（部分更新）

    未知的键返回 422
    """
    return await users.update_settings(changes)
