# app/workflow/permissions.py
# 角色权限
#
# 功能说明：
# 1. 每个内置角色有一组硬编码的默认权限
# 2. settings.role_permissions[role] 中保存的配置覆盖在默认值之上
# 3. 合并后强制打开四个关键审批权限，防止配置损坏导致审批链断掉
# 4. admin 无条件拥有所有权限
#
# 使用方法：
#   from app.workflow.permissions import resolve_permissions, has_capability
#   perms = resolve_permissions("ceo", data["settings"]["role_permissions"])
#   if has_capability(user, "can_approve_ceo", role_permissions): ...

from typing import Optional


ALL_CAPABILITIES = (
    "can_view_all",
    "can_create_payment_order",
    "can_view_payment_orders",
    "can_approve_financial",
    "can_approve_manager",
    "can_approve_ceo",
    "can_edit_own",
    "can_delete_own",
    "can_manage_trade",
    "can_create_exit_permit",
    "can_view_exit_permits",
    "can_approve_exit_ceo",
    "can_approve_exit_factory",
    "can_approve_exit_warehouse",
    "can_approve_exit_security",
    "can_manage_warehouse",
    "can_approve_bijak",
    "can_view_security",
    "can_create_security_log",
    "can_approve_security_supervisor",
)

# 所有角色共有的基础权限
BASE_PERMISSIONS = {
    "can_edit_own": True,
    "can_delete_own": True,
}

ROLE_DEFAULTS: dict[str, dict[str, bool]] = {
    "ceo": {
        "can_view_all": True,
        "can_view_payment_orders": True,
        "can_approve_ceo": True,
        "can_view_exit_permits": True,
        "can_approve_exit_ceo": True,
        "can_manage_trade": True,
        "can_approve_bijak": True,
        "can_view_security": True,
    },
    "financial": {
        "can_create_payment_order": True,
        "can_view_payment_orders": True,
        "can_approve_financial": True,
    },
    "manager": {
        "can_create_payment_order": True,
        "can_view_payment_orders": True,
        "can_approve_manager": True,
        "can_view_exit_permits": True,
    },
    "sales_manager": {
        "can_create_payment_order": True,
        "can_create_exit_permit": True,
        "can_view_exit_permits": True,
    },
    "factory_manager": {
        "can_view_exit_permits": True,
        "can_approve_exit_factory": True,
        "can_view_security": True,
    },
    "warehouse_keeper": {
        "can_view_exit_permits": True,
        "can_approve_exit_warehouse": True,
        "can_manage_warehouse": True,
    },
    "security_head": {
        "can_view_exit_permits": True,
        "can_approve_exit_security": True,
        "can_view_security": True,
        "can_approve_security_supervisor": True,
    },
    "security_guard": {
        "can_view_security": True,
        "can_create_security_log": True,
    },
    "user": {
        "can_create_payment_order": True,
    },
}

# 合并后强制打开的关键审批权限
CRITICAL_CAPABILITIES: dict[str, tuple[str, ...]] = {
    "factory_manager": ("can_approve_exit_factory",),
    "warehouse_keeper": ("can_approve_exit_warehouse",),
    "security_head": ("can_approve_exit_security",),
    "ceo": ("can_approve_exit_ceo", "can_approve_ceo"),
}


def resolve_permissions(role: str, role_permissions: Optional[dict] = None) -> dict[str, bool]:
    """
    计算角色的最终权限

    Args:
        role: 角色（内置或自定义）
        role_permissions: settings.role_permissions，可能为空或损坏

    Returns:
        dict[str, bool]: 每个权限的开关（包含 ALL_CAPABILITIES 的所有键）
    """
    if role == "admin":
        return {cap: True for cap in ALL_CAPABILITIES}

    perms = {cap: False for cap in ALL_CAPABILITIES}
    perms.update(BASE_PERMISSIONS)
    perms.update(ROLE_DEFAULTS.get(role, {}))

    stored = (role_permissions or {}).get(role) if isinstance(role_permissions, dict) else None
    if isinstance(stored, dict):
        for cap, value in stored.items():
            if isinstance(value, bool):
                perms[cap] = value

    for cap in CRITICAL_CAPABILITIES.get(role, ()):
        perms[cap] = True

    return perms


def user_permissions(user: dict, role_permissions: Optional[dict] = None) -> dict[str, bool]:
    """
    用户的最终权限（角色权限 + 用户级 can_manage_trade）

    用户级 can_manage_trade 只能授予，不能收回角色已有的权限
    """
    perms = resolve_permissions(user.get("role", "user"), role_permissions)
    if user.get("can_manage_trade") is True:
        perms["can_manage_trade"] = True
    return perms


def has_capability(user: dict, capability: str, role_permissions: Optional[dict] = None) -> bool:
    return user_permissions(user, role_permissions).get(capability, False)
