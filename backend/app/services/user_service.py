# app/services/user_service.py
# 用户与系统设置服务
#
# 功能说明：
# 1. 用户增删改查、按聊天身份查找用户
# 2. 明文密码登录（内部系统，不做加密）
# 3. 读取 / 修改文档库中的 settings（机器人 Token、角色权限、财年编号等）

from typing import Optional
from uuid import uuid4

from app.core.exceptions import DocumentNotFound, PermissionDenied, ValidationFailed
from app.core.logging import get_logger
from app.notifications.dispatcher import CHANNEL_IDENTITY_FIELDS
from app.storage.document_store import JsonDocumentStore, document_store
from app.workflow.permissions import user_permissions

logger = get_logger(__name__)


# settings 中允许通过接口修改的键
EDITABLE_SETTINGS = (
    "current_tracking_number",
    "current_exit_permit_number",
    "warehouse_sequences",
    "receipt_sequences",
    "default_company",
    "companies",
    "role_permissions",
    "fiscal_years",
    "active_fiscal_year_id",
    "telegram_bot_token",
    "bale_bot_token",
    "exit_permit_notification_groups",
)


class UserService:
    """用户与设置服务"""

    def __init__(self, store: Optional[JsonDocumentStore] = None):
        self.store = store or document_store

    # ==================== 用户查询 ====================

    async def list_users(self) -> list[dict]:
        snapshot = await self.store.read()
        return snapshot["users"]

    async def get_user(self, user_id: str) -> dict:
        snapshot = await self.store.read()
        for user in snapshot["users"]:
            if user.get("id") == user_id:
                return user
        raise DocumentNotFound(f"用户不存在: {user_id}")

    async def get_by_username(self, username: str) -> Optional[dict]:
        snapshot = await self.store.read()
        for user in snapshot["users"]:
            if user.get("username") == username:
                return user
        return None

    async def find_by_chat(self, channel: str, chat_id) -> Optional[dict]:
        """
        按聊天身份查找用户

        Args:
            channel: telegram / bale
            chat_id: 平台 chat id
        """
        field = CHANNEL_IDENTITY_FIELDS.get(channel)
        if not field:
            return None
        snapshot = await self.store.read()
        for user in snapshot["users"]:
            if user.get(field) and str(user[field]) == str(chat_id):
                return user
        return None

    async def authenticate(self, username: str, password: str) -> dict:
        """
        登录

        Raises:
            PermissionDenied: 用户名或密码错误
        """
        user = await self.get_by_username(username)
        if not user or user.get("password") != password:
            logger.warning(f"[UserService] 登录失败: {username}")
            raise PermissionDenied("用户名或密码错误")
        logger.info(f"[UserService] 登录成功: {username}")
        return user

    async def permissions_for(self, user: dict) -> dict[str, bool]:
        snapshot = await self.store.read()
        return user_permissions(user, snapshot["settings"].get("role_permissions"))

    # ==================== 用户维护 ====================

    async def create_user(self, fields: dict) -> dict:
        async with self.store.transaction() as data:
            if any(u.get("username") == fields["username"] for u in data["users"]):
                raise ValidationFailed(f"用户名已存在: {fields['username']}", field="username")
            user = {"id": uuid4().hex, **fields}
            data["users"].append(user)
        logger.info(f"[UserService] 创建用户: {user['username']} ({user.get('role')})")
        return user

    async def update_user(self, user_id: str, changes: dict) -> dict:
        async with self.store.transaction() as data:
            for user in data["users"]:
                if user.get("id") == user_id:
                    user.update(changes)
                    break
            else:
                raise DocumentNotFound(f"用户不存在: {user_id}")
        logger.info(f"[UserService] 更新用户: {user['username']} ({', '.join(changes)})")
        return user

    async def delete_user(self, user_id: str) -> None:
        async with self.store.transaction() as data:
            remaining = [u for u in data["users"] if u.get("id") != user_id]
            if len(remaining) == len(data["users"]):
                raise DocumentNotFound(f"用户不存在: {user_id}")
            if not any(u.get("role") == "admin" for u in remaining):
                raise ValidationFailed("不能删除最后一个管理员")
            data["users"] = remaining
        logger.info(f"[UserService] 删除用户: {user_id}")

    # ==================== 系统设置 ====================

    async def get_settings(self) -> dict:
        snapshot = await self.store.read()
        return snapshot["settings"]

    async def update_settings(self, changes: dict) -> dict:
        """
        修改系统设置，只接受 EDITABLE_SETTINGS 中的键

        Raises:
            ValidationFailed: 包含未知的键
        """
        unknown = [k for k in changes if k not in EDITABLE_SETTINGS]
        if unknown:
            raise ValidationFailed(f"未知的设置项: {', '.join(unknown)}", fields=unknown)

        async with self.store.transaction() as data:
            data["settings"].update(changes)
            result = data["settings"]

        logger.info(f"[UserService] 更新设置: {', '.join(changes)}")
        return result


# 全局单例
user_service = UserService()
