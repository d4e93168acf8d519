# app/api/users.py
# 用户与权限 API
#
# - POST /api/login 用户名 + 密码登录，返回用户信息和解析后的权限
# - 用户维护仅管理员
# - GET /api/permissions/{role} 查看某角色的有效权限（默认值 + settings 覆盖）

from fastapi import APIRouter, Depends

from app.api.deps import get_current_admin_user, get_current_user, get_user_service
from app.core.logging import get_logger
from app.schemas.user import (
    LoginRequest,
    LoginResponse,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from app.services.user_service import UserService
from app.workflow.permissions import resolve_permissions

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["users"])


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    users: UserService = Depends(get_user_service),
):
    """
    登录

    用户名或密码错误返回 403
    """
    user = await users.authenticate(request.username, request.password)
    permissions = await users.permissions_for(user)
    return LoginResponse(user=UserResponse.model_validate(user), permissions=permissions)


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    users: UserService = Depends(get_user_service),
    admin: dict = Depends(get_current_admin_user),
):
    return [UserResponse.model_validate(u) for u in await users.list_users()]


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: UserCreate,
    users: UserService = Depends(get_user_service),
    admin: dict = Depends(get_current_admin_user),
):
    user = await users.create_user(request.model_dump())
    logger.info(f"[UsersAPI] 管理员 {admin['username']} 创建用户: {user['username']}")
    return UserResponse.model_validate(user)


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    request: UserUpdate,
    users: UserService = Depends(get_user_service),
    admin: dict = Depends(get_current_admin_user),
):
    # 只更新请求中出现的字段
    changes = request.model_dump(exclude_unset=True)
    user = await users.update_user(user_id, changes)
    return UserResponse.model_validate(user)


@router.delete("/users/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    users: UserService = Depends(get_user_service),
    admin: dict = Depends(get_current_admin_user),
):
    await users.delete_user(user_id)


@router.get("/permissions/{role}")
async def role_permissions(
    role: str,
    users: UserService = Depends(get_user_service),
    current_user: dict = Depends(get_current_user),
) -> dict[str, bool]:
    store_settings = await users.get_settings()
    return resolve_permissions(role, store_settings.get("role_permissions"))
