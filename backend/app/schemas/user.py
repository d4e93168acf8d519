# app/schemas/user.py
# 用户数据验证模式
#
# 命名规范：
# - XxxCreate: 创建数据时使用（不包含 id）
# - XxxUpdate: 更新数据时使用（所有字段可选）
# - XxxResponse: 返回数据时使用（隐藏密码）

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    """内置角色"""
    ADMIN = "admin"
    CEO = "ceo"
    MANAGER = "manager"
    FINANCIAL = "financial"
    SALES_MANAGER = "sales_manager"
    FACTORY_MANAGER = "factory_manager"
    WAREHOUSE_KEEPER = "warehouse_keeper"
    SECURITY_HEAD = "security_head"
    SECURITY_GUARD = "security_guard"
    USER = "user"


class UserCreate(BaseModel):
    """
    创建用户请求

    role 可以是内置角色，也可以是自定义角色 id（自定义角色的权限在 settings.role_permissions 中配置）
    """
    username: str = Field(..., min_length=1, max_length=64)
    password: str = Field(..., min_length=1, max_length=128)
    full_name: str = Field("", max_length=100)
    role: str = Field(UserRole.USER.value)
    telegram_chat_id: Optional[str] = None
    bale_chat_id: Optional[str] = None
    phone_number: Optional[str] = None
    push_subscription: Optional[dict] = None
    receive_notifications: bool = True
    can_manage_trade: Optional[bool] = None


class UserUpdate(BaseModel):
    """更新用户请求（所有字段可选）"""
    password: Optional[str] = Field(None, min_length=1, max_length=128)
    full_name: Optional[str] = None
    role: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    bale_chat_id: Optional[str] = None
    phone_number: Optional[str] = None
    push_subscription: Optional[dict] = None
    receive_notifications: Optional[bool] = None
    can_manage_trade: Optional[bool] = None


class UserResponse(BaseModel):
    """用户响应（不含密码）"""

    model_config = ConfigDict(extra="ignore")

    id: str
    username: str
    full_name: str = ""
    role: str
    telegram_chat_id: Optional[str] = None
    bale_chat_id: Optional[str] = None
    phone_number: Optional[str] = None
    receive_notifications: bool = True
    can_manage_trade: Optional[bool] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    user: UserResponse
    permissions: dict[str, bool]
