# app/schemas/document.py
# 单据数据模式
#
# 功能说明：
# 1. 单据统一信封（Document）：id / number / status / company / approvals ...
# 2. 各单据类型的业务字段（payload）单独建模，状态机不关心 payload 内容
# 3. API 请求模式：创建、修改、状态流转
#
# 单据类型：
# - payment      付款单（دستور پرداخت）
# - exit_permit  出门证（مجوز خروج کالا）
# - bijak        出库单（بیجک，仓库出库，需 CEO 审批）
# - receipt      入库单（رسید انبار，创建即生效）

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.exceptions import ValidationFailed


class DocumentType(str, Enum):
    """单据类型"""
    PAYMENT = "payment"
    EXIT_PERMIT = "exit_permit"
    BIJAK = "bijak"
    RECEIPT = "receipt"


class TransitionAction(str, Enum):
    """状态流转动作"""
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"     # 仅付款单：对已终审的付款单发起撤销


class ArchiveSearchMode(str, Enum):
    """归档搜索方式"""
    NUMBER = "number"     # 编号精确匹配
    DATE = "date"         # 日期包含匹配（2026、2026-05、1403/02 ...）


# ==================== 业务字段（payload） ====================

class PaymentLine(BaseModel):
    """付款明细（支票/转账等）"""
    method: str = ""
    amount: int = 0
    bank_name: str = ""
    reference: str = ""


class PaymentPayload(BaseModel):
    """付款单业务字段"""
    payee: str = Field(..., min_length=1, description="收款人")
    amount: int = Field(..., gt=0, description="金额（里亚尔）")
    description: str = Field("", description="用途说明")
    payment_details: list[PaymentLine] = Field(default_factory=list)
    payment_place: str = ""


class ExitPermitItem(BaseModel):
    goods_name: str = Field(..., min_length=1)
    carton_count: int = 0
    weight: float = 0


class ExitPermitPayload(BaseModel):
    """出门证业务字段"""
    recipient_name: str = Field(..., min_length=1, description="收货人")
    goods_name: str = ""
    carton_count: int = 0
    weight: float = 0
    items: list[ExitPermitItem] = Field(default_factory=list)
    destinations: list[str] = Field(default_factory=list)
    driver_name: str = ""
    plate_number: str = ""
    exit_time: str = ""


class WarehouseLine(BaseModel):
    item_id: str = ""
    item_name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    weight: float = 0


class WarehousePayload(BaseModel):
    """出库单 / 入库单业务字段"""
    items: list[WarehouseLine] = Field(..., min_length=1)
    recipient_name: str = ""
    driver_name: str = ""
    plate_number: str = ""
    destination: str = ""
    proforma_number: str = ""


PAYLOAD_MODELS: dict[DocumentType, type[BaseModel]] = {
    DocumentType.PAYMENT: PaymentPayload,
    DocumentType.EXIT_PERMIT: ExitPermitPayload,
    DocumentType.BIJAK: WarehousePayload,
    DocumentType.RECEIPT: WarehousePayload,
}


def validate_payload(doc_type: DocumentType, payload: dict) -> dict:
    """
    按单据类型校验业务字段

    Args:
        doc_type: 单据类型
        payload: 原始业务字段

    Returns:
        dict: 规范化后的业务字段

    Raises:
        ValidationFailed: 字段缺失或格式错误
    """
    model = PAYLOAD_MODELS[DocumentType(doc_type)]
    try:
        return model.model_validate(payload).model_dump()
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ValidationFailed(
            f"字段不合法: {', '.join(fields)}",
            fields=fields,
        ) from e


# ==================== 单据信封 ====================

class HistoryEntry(BaseModel):
    from_status: str
    to_status: str
    action: str
    actor: str
    at: int


class Document(BaseModel):
    """单据统一信封"""

    model_config = ConfigDict(extra="ignore")

    id: str
    doc_type: DocumentType
    number: int
    status: str
    company: str = ""
    requester: str = ""
    requester_username: str = ""
    date: str = ""
    approvals: dict[str, str] = Field(default_factory=dict)
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)
    history: list[HistoryEntry] = Field(default_factory=list)
    created_at: int
    updated_at: int


# ==================== 请求模型 ====================

class DocumentCreate(BaseModel):
    """创建单据请求"""
    company: Optional[str] = Field(None, description="公司，不填使用默认公司")
    date: Optional[str] = Field(None, description="单据日期，不填使用当天")
    payload: dict[str, Any]


class DocumentUpdate(BaseModel):
    """修改单据请求（只能改业务字段，不能改状态和编号）"""
    date: Optional[str] = None
    payload: dict[str, Any]


class TransitionRequest(BaseModel):
    """状态流转请求"""
    action: TransitionAction
    reason: Optional[str] = Field(None, description="驳回原因")
