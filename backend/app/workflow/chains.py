# app/workflow/chains.py
# 审批链定义
#
# 每种单据一条审批链（ChainDescriptor）：
# - stages: 有序的待审批状态，每个状态标注审批角色、所需权限、审批人字段
# - final_status: 最后一个审批通过后的终态
# - rejected_status: 任一非终态都可驳回到这个终态
# - revocation_stages: 付款单专有的撤销子链（从 final_status 进入）
#
# 付款单:  pending_financial → approved_financial → approved_management → approved_final
# 撤销子链: approved_final → revocation_pending_financial → revocation_pending_manager
#          → revocation_pending_ceo → revoked
# 出门证:  pending_ceo → pending_factory → pending_warehouse → pending_security → exited
# 出库单:  pending → approved
# 入库单:  创建即 approved，没有审批链

from dataclasses import dataclass, field
from typing import Optional

from app.schemas.document import DocumentType


class PaymentStatus:
    PENDING_FINANCIAL = "pending_financial"
    APPROVED_FINANCIAL = "approved_financial"
    APPROVED_MANAGEMENT = "approved_management"
    APPROVED_FINAL = "approved_final"
    REJECTED = "rejected"
    REVOCATION_PENDING_FINANCIAL = "revocation_pending_financial"
    REVOCATION_PENDING_MANAGER = "revocation_pending_manager"
    REVOCATION_PENDING_CEO = "revocation_pending_ceo"
    REVOKED = "revoked"


class ExitPermitStatus:
    PENDING_CEO = "pending_ceo"
    PENDING_FACTORY = "pending_factory"
    PENDING_WAREHOUSE = "pending_warehouse"
    PENDING_SECURITY = "pending_security"
    EXITED = "exited"
    REJECTED = "rejected"


class WarehouseStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Stage:
    """审批链中的一个待审批状态"""
    status: str
    role: str                   # 负责审批的角色
    capability: str             # 审批所需权限
    approval_field: str         # approvals 中记录审批人的键
    notify_roles: tuple[str, ...] = ()

    @property
    def responsible_roles(self) -> tuple[str, ...]:
        """进入该状态时需要通知的角色"""
        return self.notify_roles or (self.role,)


@dataclass(frozen=True)
class ChainDescriptor:
    doc_type: DocumentType
    label: str                                  # 波斯文名称，用于消息
    initial_status: str
    final_status: str
    stages: tuple[Stage, ...] = ()
    rejected_status: str = "rejected"
    revocation_stages: tuple[Stage, ...] = ()
    revoked_status: Optional[str] = None
    revoke_capability: Optional[str] = None
    status_labels: dict[str, str] = field(default_factory=dict)

    @property
    def terminal_statuses(self) -> frozenset[str]:
        statuses = {self.final_status, self.rejected_status}
        if self.revoked_status:
            statuses.add(self.revoked_status)
        return frozenset(statuses)

    @property
    def all_statuses(self) -> tuple[str, ...]:
        pending = tuple(s.status for s in self.stages + self.revocation_stages)
        return pending + tuple(sorted(self.terminal_statuses))

    def stage_for(self, status: str) -> Optional[Stage]:
        """status 对应的待审批阶段（主链或撤销子链），终态返回 None"""
        for stage in self.stages + self.revocation_stages:
            if stage.status == status:
                return stage
        return None

    def is_revocation(self, status: str) -> bool:
        return any(stage.status == status for stage in self.revocation_stages)

    def successor(self, status: str) -> Optional[str]:
        """审批通过后的下一个状态"""
        for chain, end in (
            (self.stages, self.final_status),
            (self.revocation_stages, self.revoked_status),
        ):
            statuses = [stage.status for stage in chain]
            if status in statuses:
                index = statuses.index(status)
                if index + 1 < len(statuses):
                    return statuses[index + 1]
                return end
        return None

    def label_for(self, status: str) -> str:
        return self.status_labels.get(status, status)


PAYMENT_CHAIN = ChainDescriptor(
    doc_type=DocumentType.PAYMENT,
    label="دستور پرداخت",
    initial_status=PaymentStatus.PENDING_FINANCIAL,
    final_status=PaymentStatus.APPROVED_FINAL,
    stages=(
        Stage(PaymentStatus.PENDING_FINANCIAL, "financial", "can_approve_financial", "financial"),
        Stage(PaymentStatus.APPROVED_FINANCIAL, "manager", "can_approve_manager", "manager"),
        Stage(PaymentStatus.APPROVED_MANAGEMENT, "ceo", "can_approve_ceo", "ceo"),
    ),
    revocation_stages=(
        Stage(PaymentStatus.REVOCATION_PENDING_FINANCIAL, "financial", "can_approve_financial", "revocation_financial"),
        Stage(PaymentStatus.REVOCATION_PENDING_MANAGER, "manager", "can_approve_manager", "revocation_manager"),
        Stage(PaymentStatus.REVOCATION_PENDING_CEO, "ceo", "can_approve_ceo", "revocation_ceo"),
    ),
    revoked_status=PaymentStatus.REVOKED,
    revoke_capability="can_create_payment_order",
    status_labels={
        PaymentStatus.PENDING_FINANCIAL: "در انتظار بررسی مالی",
        PaymentStatus.APPROVED_FINANCIAL: "تایید مالی / در انتظار مدیریت",
        PaymentStatus.APPROVED_MANAGEMENT: "تایید مدیریت / در انتظار مدیرعامل",
        PaymentStatus.APPROVED_FINAL: "تایید نهایی",
        PaymentStatus.REJECTED: "رد شده",
        PaymentStatus.REVOCATION_PENDING_FINANCIAL: "در انتظار ابطال (مالی)",
        PaymentStatus.REVOCATION_PENDING_MANAGER: "در انتظار ابطال (مدیریت)",
        PaymentStatus.REVOCATION_PENDING_CEO: "در انتظار ابطال (مدیرعامل)",
        PaymentStatus.REVOKED: "باطل شده",
    },
)

EXIT_PERMIT_CHAIN = ChainDescriptor(
    doc_type=DocumentType.EXIT_PERMIT,
    label="مجوز خروج",
    initial_status=ExitPermitStatus.PENDING_CEO,
    final_status=ExitPermitStatus.EXITED,
    stages=(
        Stage(ExitPermitStatus.PENDING_CEO, "ceo", "can_approve_exit_ceo", "ceo"),
        Stage(ExitPermitStatus.PENDING_FACTORY, "factory_manager", "can_approve_exit_factory", "factory"),
        Stage(ExitPermitStatus.PENDING_WAREHOUSE, "warehouse_keeper", "can_approve_exit_warehouse", "warehouse"),
        Stage(
            ExitPermitStatus.PENDING_SECURITY,
            "security_head",
            "can_approve_exit_security",
            "security",
            notify_roles=("security_head", "security_guard"),
        ),
    ),
    status_labels={
        ExitPermitStatus.PENDING_CEO: "در انتظار مدیرعامل",
        ExitPermitStatus.PENDING_FACTORY: "در انتظار مدیر کارخانه",
        ExitPermitStatus.PENDING_WAREHOUSE: "در انتظار انبار",
        ExitPermitStatus.PENDING_SECURITY: "در انتظار انتظامات",
        ExitPermitStatus.EXITED: "خارج شده",
        ExitPermitStatus.REJECTED: "رد شده",
    },
)

BIJAK_CHAIN = ChainDescriptor(
    doc_type=DocumentType.BIJAK,
    label="بیجک",
    initial_status=WarehouseStatus.PENDING,
    final_status=WarehouseStatus.APPROVED,
    stages=(
        Stage(WarehouseStatus.PENDING, "ceo", "can_approve_bijak", "ceo"),
    ),
    status_labels={
        WarehouseStatus.PENDING: "در انتظار تایید",
        WarehouseStatus.APPROVED: "تایید شده",
        WarehouseStatus.REJECTED: "رد شده",
    },
)

RECEIPT_CHAIN = ChainDescriptor(
    doc_type=DocumentType.RECEIPT,
    label="رسید انبار",
    initial_status=WarehouseStatus.APPROVED,
    final_status=WarehouseStatus.APPROVED,
    status_labels={
        WarehouseStatus.APPROVED: "ثبت شده",
    },
)

CHAINS: dict[DocumentType, ChainDescriptor] = {
    DocumentType.PAYMENT: PAYMENT_CHAIN,
    DocumentType.EXIT_PERMIT: EXIT_PERMIT_CHAIN,
    DocumentType.BIJAK: BIJAK_CHAIN,
    DocumentType.RECEIPT: RECEIPT_CHAIN,
}


def get_chain(doc_type) -> ChainDescriptor:
    return CHAINS[DocumentType(doc_type)]
