# app/workflow/sequence.py
# 单据编号分配
#
# 编号在 (单据类型, 公司) 范围内唯一且递增。
#
# next_number() 是纯函数：
#   observed = 该公司该类型已有单据的最大编号（没有则 0）
#   floor    = 当前财年为该公司配置的起始号
#              否则 全局计数器 + 1
#              否则 DEFAULT_START_NUMBER
#   observed >= floor 且 observed > 0  → observed + 1
#   floor > 0                          → floor
#   否则                                → DEFAULT_START_NUMBER
#
# commit_number() 把已发出的编号写回计数器。
# 两者必须在同一个 document_store.transaction() 内调用，否则并发创建会拿到相同编号。

from typing import Optional

from app.core.config import settings as app_settings
from app.schemas.document import DocumentType
from app.storage.document_store import DOCUMENT_COLLECTIONS


# 单据类型 → 财年配置中的起始号字段
FISCAL_START_FIELDS = {
    DocumentType.PAYMENT: "start_tracking_number",
    DocumentType.EXIT_PERMIT: "start_exit_permit_number",
    DocumentType.BIJAK: "start_bijak_number",
    DocumentType.RECEIPT: "start_bijak_number",
}

# 全局计数器：付款单/出门证为单个整数，出库/入库为按公司的字典
GLOBAL_COUNTERS = {
    DocumentType.PAYMENT: "current_tracking_number",
    DocumentType.EXIT_PERMIT: "current_exit_permit_number",
}
COMPANY_COUNTERS = {
    DocumentType.BIJAK: "warehouse_sequences",
    DocumentType.RECEIPT: "receipt_sequences",
}


def _as_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def observed_max(snapshot: dict, doc_type, company: str) -> int:
    """该公司该类型已有单据的最大编号"""
    doc_type = DocumentType(doc_type)
    documents = snapshot.get(DOCUMENT_COLLECTIONS[doc_type.value], [])
    numbers = [
        _as_int(doc.get("number"))
        for doc in documents
        if doc.get("doc_type", doc_type.value) == doc_type.value
        and (doc.get("company") or "") == (company or "")
    ]
    return max(numbers, default=0)


def _active_fiscal_year(store_settings: dict) -> Optional[dict]:
    active_id = store_settings.get("active_fiscal_year_id")
    if not active_id:
        return None
    for year in store_settings.get("fiscal_years") or []:
        if isinstance(year, dict) and year.get("id") == active_id:
            return year
    return None


def sequence_floor(store_settings: dict, doc_type, company: str) -> int:
    """编号下限：财年起始号 → 全局计数器 + 1 → 0（由调用方兜底）"""
    doc_type = DocumentType(doc_type)

    year = _active_fiscal_year(store_settings)
    if year:
        sequences = (year.get("company_sequences") or {}).get(company or "") or {}
        start = _as_int(sequences.get(FISCAL_START_FIELDS[doc_type]))
        if start > 0:
            return start

    if doc_type in GLOBAL_COUNTERS:
        counter = _as_int(store_settings.get(GLOBAL_COUNTERS[doc_type]))
    else:
        counters = store_settings.get(COMPANY_COUNTERS[doc_type]) or {}
        counter = _as_int(counters.get(company or ""))

    return counter + 1 if counter > 0 else 0


def next_number(snapshot: dict, doc_type, company: str) -> int:
    """
    计算下一个编号（不修改快照）

    Args:
        snapshot: 文档库快照
        doc_type: 单据类型
        company: 公司

    Returns:
        int: 下一个编号
    """
    fallback = app_settings.DEFAULT_START_NUMBER
    observed = observed_max(snapshot, doc_type, company)
    floor = sequence_floor(snapshot.get("settings") or {}, doc_type, company)

    if observed > 0 and observed >= floor:
        return observed + 1
    if floor > 0:
        return floor
    return fallback


def commit_number(snapshot: dict, doc_type, company: str, number: int) -> None:
    """把已发出的编号写回计数器（只增不减）"""
    doc_type = DocumentType(doc_type)
    store_settings = snapshot.setdefault("settings", {})

    if doc_type in GLOBAL_COUNTERS:
        key = GLOBAL_COUNTERS[doc_type]
        store_settings[key] = max(_as_int(store_settings.get(key)), number)
        return

    key = COMPANY_COUNTERS[doc_type]
    counters = store_settings.get(key)
    if not isinstance(counters, dict):
        counters = {}
    counters[company or ""] = max(_as_int(counters.get(company or "")), number)
    store_settings[key] = counters
