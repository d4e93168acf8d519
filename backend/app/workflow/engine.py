# app/workflow/engine.py
# 审批状态机
#
# 功能说明：
# 1. transition(): 纯函数，(单据类型, 当前状态, 操作角色, 动作) → 下一状态 + 下一责任角色
# 2. authorize(): 唯一的权限检查入口，在调用 transition() 之前执行
# 3. apply_transition(): 把 transition() 的结果写入单据（状态、审批人、驳回信息、历史）
#
# 规则：
# - approve: 沿审批链前进一步；已在终态则不变更（changed=False）
# - reject:  任一非终态 → rejected；终态（含已驳回）不变更
#            撤销子链中驳回 = 取消撤销，回到 approved_final
# - revoke:  仅付款单，approved_final → 撤销子链第一步
#
# 使用方法：
#   result = transition("payment", "pending_financial", "financial", "approve")
#   if result.changed:
#       apply_transition(order, result, actor_name="Ali")

import time
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import PermissionDenied
from app.schemas.document import TransitionAction
from app.workflow.chains import get_chain
from app.workflow.permissions import has_capability


@dataclass(frozen=True)
class TransitionResult:
    """状态流转结果"""
    changed: bool
    action: str
    previous_status: str
    next_status: str
    next_roles: tuple[str, ...] = ()
    approval_field: Optional[str] = None    # 本次审批要写入的 approvals 键
    acting_role: Optional[str] = None
    reason: str = ""                        # changed=False 时的原因

    @property
    def is_terminal(self) -> bool:
        return not self.next_roles


def _unchanged(action: str, status: str, acting_role: Optional[str], reason: str) -> TransitionResult:
    return TransitionResult(
        changed=False,
        action=action,
        previous_status=status,
        next_status=status,
        acting_role=acting_role,
        reason=reason,
    )


def transition(
    doc_type,
    current_status: str,
    acting_role: Optional[str],
    action,
) -> TransitionResult:
    """
    计算状态流转（不做权限检查，调用方必须先 authorize）

    Args:
        doc_type: 单据类型
        current_status: 当前状态
        acting_role: 操作人角色（只记录，不校验）
        action: approve / reject / revoke

    Returns:
        TransitionResult: changed=False 表示不可流转
    """
    chain = get_chain(doc_type)
    action = TransitionAction(action).value

    if action == TransitionAction.APPROVE.value:
        stage = chain.stage_for(current_status)
        next_status = chain.successor(current_status) if stage else None
        if not stage or not next_status:
            return _unchanged(action, current_status, acting_role, "terminal")
        next_stage = chain.stage_for(next_status)
        return TransitionResult(
            changed=True,
            action=action,
            previous_status=current_status,
            next_status=next_status,
            next_roles=next_stage.responsible_roles if next_stage else (),
            approval_field=stage.approval_field,
            acting_role=acting_role,
        )

    if action == TransitionAction.REJECT.value:
        if current_status in chain.terminal_statuses or not chain.stage_for(current_status):
            return _unchanged(action, current_status, acting_role, "terminal")
        if chain.is_revocation(current_status):
            # 撤销被驳回：回到已终审
            next_status = chain.final_status
        else:
            next_status = chain.rejected_status
        return TransitionResult(
            changed=True,
            action=action,
            previous_status=current_status,
            next_status=next_status,
            acting_role=acting_role,
        )

    # revoke
    if not chain.revocation_stages or current_status != chain.final_status:
        return _unchanged(action, current_status, acting_role, "not_revocable")
    first = chain.revocation_stages[0]
    return TransitionResult(
        changed=True,
        action=action,
        previous_status=current_status,
        next_status=first.status,
        next_roles=first.responsible_roles,
        acting_role=acting_role,
    )


def required_capability(doc_type, status: str, action=TransitionAction.APPROVE) -> Optional[str]:
    """
    对处于 status 的单据执行 action 所需的权限

    approve / reject 由当前阶段的权限控制；revoke 由链上配置的 revoke_capability 控制。
    终态上的 approve / reject 返回 None（交给 transition 报告不可变更）。
    """
    chain = get_chain(doc_type)
    if TransitionAction(action) == TransitionAction.REVOKE:
        return chain.revoke_capability
    stage = chain.stage_for(status)
    return stage.capability if stage else None


def authorize(
    user: dict,
    doc_type,
    status: str,
    action,
    role_permissions: Optional[dict] = None,
) -> None:
    """
    权限检查（所有入口共用）

    Raises:
        PermissionDenied: 用户没有所需权限
    """
    capability = required_capability(doc_type, status, action)
    if capability is None:
        return
    if not has_capability(user, capability, role_permissions):
        raise PermissionDenied(
            f"角色 {user.get('role')} 没有权限 {capability}",
            capability=capability,
            role=user.get("role"),
        )


def apply_transition(
    document: dict,
    result: TransitionResult,
    actor_name: str,
    reason: Optional[str] = None,
) -> dict:
    """
    把流转结果写入单据（原地修改并返回）

    - approvals 中每个审批字段只写一次
    - 驳回时记录 rejected_by / rejection_reason
    - 追加一条 history
    """
    if not result.changed:
        return document

    now = int(time.time() * 1000)
    approvals = document.setdefault("approvals", {})
    if result.approval_field and not approvals.get(result.approval_field):
        approvals[result.approval_field] = actor_name

    if result.action == TransitionAction.REJECT.value and result.next_status == get_chain(
        document["doc_type"]
    ).rejected_status:
        document["rejected_by"] = actor_name
        document["rejection_reason"] = reason or ""

    document["status"] = result.next_status
    document["updated_at"] = now
    document.setdefault("history", []).append({
        "from_status": result.previous_status,
        "to_status": result.next_status,
        "action": result.action,
        "actor": actor_name,
        "at": now,
    })
    return document
