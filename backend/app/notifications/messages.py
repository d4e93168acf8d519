# app/notifications/messages.py
# 通知文案
#
# 所有面向终端用户的文字都是波斯文；这里只负责把单据格式化成文字，
# 不关心发送到哪个渠道。

from typing import Optional

from app.schemas.document import DocumentType
from app.workflow.chains import get_chain

# 回调数据格式：<action>:<doc_type>:<document id>
CALLBACK_SEPARATOR = ":"

DOCUMENT_ICONS = {
    DocumentType.PAYMENT.value: "💰",
    DocumentType.EXIT_PERMIT.value: "🚛",
    DocumentType.BIJAK.value: "📦",
    DocumentType.RECEIPT.value: "📥",
}


def format_amount(amount) -> str:
    """1500000 → 1,500,000"""
    try:
        return f"{int(amount):,}"
    except (TypeError, ValueError):
        return str(amount or 0)


def _item_lines(items: list[dict], name_key: str, count_key: str) -> list[str]:
    lines = []
    for item in items or []:
        lines.append(f"  • {item.get(name_key, '')} ({item.get(count_key, 0)})")
    return lines


def document_summary(document: dict) -> str:
    """单据摘要（卡片说明文字、纯文本通知、报表共用）"""
    doc_type = document.get("doc_type", DocumentType.PAYMENT.value)
    chain = get_chain(doc_type)
    payload = document.get("payload") or {}

    lines = [
        f"{DOCUMENT_ICONS.get(doc_type, '📄')} {chain.label} #{document.get('number')}",
        f"وضعیت: {chain.label_for(document.get('status', ''))}",
        f"درخواست کننده: {document.get('requester', '')}",
    ]
    if document.get("company"):
        lines.append(f"شرکت: {document['company']}")
    if document.get("date"):
        lines.append(f"تاریخ: {document['date']}")

    if doc_type == DocumentType.PAYMENT.value:
        lines.append(f"گیرنده: {payload.get('payee', '')}")
        lines.append(f"مبلغ: {format_amount(payload.get('amount'))} ریال")
        if payload.get("description"):
            lines.append(f"بابت: {payload['description']}")
    elif doc_type == DocumentType.EXIT_PERMIT.value:
        lines.append(f"گیرنده کالا: {payload.get('recipient_name', '')}")
        if payload.get("items"):
            lines.append("اقلام:")
            lines.extend(_item_lines(payload["items"], "goods_name", "carton_count"))
        else:
            lines.append(f"کالا: {payload.get('goods_name', '')}")
            lines.append(f"تعداد: {payload.get('carton_count', 0)}")
    else:
        if payload.get("recipient_name"):
            lines.append(f"تحویل گیرنده: {payload['recipient_name']}")
        lines.append("اقلام:")
        lines.extend(_item_lines(payload.get("items"), "item_name", "quantity"))

    if document.get("rejection_reason"):
        lines.append(f"علت رد: {document['rejection_reason']}")

    return "\n".join(lines)


def awaiting_action_message(document: dict) -> str:
    return f"🔔 درخواست جدید برای بررسی\n\n{document_summary(document)}"


def approved_final_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    return f"✅ {chain.label} #{document['number']} تایید نهایی شد."


def rejected_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    text = f"❌ {chain.label} #{document['number']} توسط {document.get('rejected_by') or '-'} رد شد."
    if document.get("rejection_reason"):
        text += f"\nعلت: {document['rejection_reason']}"
    return text


def revoked_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    return f"🚫 {chain.label} #{document['number']} باطل شد."


def revocation_cancelled_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    return f"↩️ درخواست ابطال {chain.label} #{document['number']} رد شد و سند به حالت تایید نهایی برگشت."


def callback_token(action: str, doc_type: str, document_id: str) -> str:
    return CALLBACK_SEPARATOR.join((action, doc_type, document_id))


def parse_callback_token(data: str) -> Optional[tuple[str, str, str]]:
    """approve:payment:<id> → ("approve", "payment", "<id>")，格式不对返回 None"""
    parts = (data or "").split(CALLBACK_SEPARATOR, 2)
    if len(parts) != 3 or not all(parts):
        return None
    action, doc_type, document_id = parts
    if action not in ("approve", "reject"):
        return None
    if doc_type not in {t.value for t in DocumentType}:
        return None
    return action, doc_type, document_id


def action_keyboard(document: dict) -> dict:
    """审批/驳回内联按钮"""
    doc_type = document["doc_type"]
    return {
        "inline_keyboard": [[
            {"text": "✅ تایید", "callback_data": callback_token("approve", doc_type, document["id"])},
            {"text": "❌ رد", "callback_data": callback_token("reject", doc_type, document["id"])},
        ]]
    }
