# app/workflow/__init__.py
# 审批流核心：审批链、状态机、角色权限、编号分配
#
# 这一层全部是纯函数，不做 I/O

from app.workflow.chains import (
    Stage,
    ChainDescriptor,
    PaymentStatus,
    ExitPermitStatus,
    WarehouseStatus,
    CHAINS,
    get_chain,
)
from app.workflow.engine import (
    TransitionResult,
    transition,
    authorize,
    apply_transition,
    required_capability,
)
from app.workflow.permissions import (
    resolve_permissions,
    user_permissions,
    has_capability,
)
from app.workflow.sequence import next_number, commit_number

__all__ = [
    "Stage",
    "ChainDescriptor",
    "PaymentStatus",
    "ExitPermitStatus",
    "WarehouseStatus",
    "CHAINS",
    "get_chain",
    "TransitionResult",
    "transition",
    "authorize",
    "apply_transition",
    "required_capability",
    "resolve_permissions",
    "user_permissions",
    "has_capability",
    "next_number",
    "commit_number",
]
