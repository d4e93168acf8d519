# tests/test_permissions.py
# 角色权限测试
#
# 运行方式：
#   cd backend
#   pytest tests/test_permissions.py -v

from app.workflow.permissions import (
    ALL_CAPABILITIES,
    has_capability,
    resolve_permissions,
    user_permissions,
)


def test_admin_has_everything():
    perms = resolve_permissions("admin", {"admin": {"can_view_all": False}})
    assert all(perms[cap] for cap in ALL_CAPABILITIES)


def test_unknown_role_gets_base_permissions_only():
    perms = resolve_permissions("driver")
    granted = {cap for cap, value in perms.items() if value}
    assert granted == {"can_edit_own", "can_delete_own"}


def test_every_capability_present():
    perms = resolve_permissions("financial")
    assert set(ALL_CAPABILITIES) <= set(perms)


def test_stored_overrides_apply():
    perms = resolve_permissions("financial", {"financial": {"can_view_all": True, "can_approve_financial": False}})
    assert perms["can_view_all"] is True
    assert perms["can_approve_financial"] is False


def test_non_boolean_overrides_ignored():
    perms = resolve_permissions("financial", {"financial": {"can_approve_financial": "no", "can_view_all": 1}})
    assert perms["can_approve_financial"] is True
    assert perms["can_view_all"] is False


def test_corrupt_role_permissions_ignored():
    assert resolve_permissions("manager", "corrupt")["can_approve_manager"] is True
    assert resolve_permissions("manager", {"manager": ["x"]})["can_approve_manager"] is True


def test_critical_approvals_forced_on():
    stored = {
        "factory_manager": {"can_approve_exit_factory": False},
        "warehouse_keeper": {"can_approve_exit_warehouse": False},
        "security_head": {"can_approve_exit_security": False},
    }
    assert resolve_permissions("factory_manager", stored)["can_approve_exit_factory"]
    assert resolve_permissions("warehouse_keeper", stored)["can_approve_exit_warehouse"]
    assert resolve_permissions("security_head", stored)["can_approve_exit_security"]


def test_user_level_trade_grant():
    user = {"role": "financial", "can_manage_trade": True}
    assert user_permissions(user)["can_manage_trade"] is True
    assert user_permissions({"role": "financial"})["can_manage_trade"] is False


def test_user_level_trade_cannot_revoke_role_default():
    """用户级 False 不收回角色默认的贸易权限"""
    assert has_capability({"role": "ceo", "can_manage_trade": False}, "can_manage_trade") is True
    assert has_capability({"role": "sales_manager", "can_manage_trade": False}, "can_manage_trade") is False


def test_has_capability_unknown_capability():
    assert has_capability({"role": "ceo"}, "can_fly") is False
