# app/bot/parser.py
# 聊天命令解析
#
# parse(text, snapshot) → Intent | None，纯函数，按规则表顺序匹配：
#   1. 菜单文字（کارتابل پرداخت、لیست خروج ...）→ 报表意图
#   2. 带类型关键字的命令（تایید پرداخت 1001、رد خروج 1002、ok b 5）→ 明确的审批/驳回，
#      编号后可跟公司名（تایید بیجک 1001 A），出库单按公司编号时用来区分
#   3. 不带类型的命令（تایید 1001）→ 在付款单和出门证中查编号：
#      两边都有，或同一类型有多个公司的单据 → AMBIGUOUS；只有一个 → 对应类型；都没有 → NOT_FOUND
#   4. 帮助
# 都不匹配返回 None，由调用方继续按会话处理

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from app.schemas.document import DocumentType
from app.storage.document_store import DOCUMENT_COLLECTIONS


class IntentKind(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REPORT = "report"
    ARCHIVE = "archive"
    HELP = "help"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    doc_type: Optional[DocumentType] = None
    number: Optional[int] = None
    report: Optional[str] = None          # payment / exit_permit / bijak / general
    action: Optional[str] = None          # AMBIGUOUS / NOT_FOUND 时保留原动作
    company: Optional[str] = None         # 命令中编号后的公司名（出库单按公司编号）
    companies: tuple[str, ...] = ()       # AMBIGUOUS：共用该编号的公司


# 波斯文和阿拉伯文数字 → ASCII
_DIGITS = str.maketrans("۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩", "01234567890123456789")


def normalize(text: str) -> str:
    """数字转 ASCII、去掉零宽字符、合并空白"""
    text = (text or "").translate(_DIGITS)
    text = text.replace("\u200c", " ").replace("\u200f", "")
    return re.sub(r"\s+", " ", text).strip()


APPROVE_WORDS = r"(?:تایید|تأیید|ok|yes|اوکی)"
REJECT_WORDS = r"(?:رد|کنسل|no|reject)"

TYPE_KEYWORDS = {
    DocumentType.PAYMENT: r"(?:پرداخت|سند|واریز|هزینه|p)",
    DocumentType.EXIT_PERMIT: r"(?:خروج|حواله|بار|مجوز|e)",
    DocumentType.BIJAK: r"(?:بیجک|انبار|b)",
}


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: re.Pattern
    build: Callable[[re.Match, Optional[dict]], Intent]


def _report(report: str) -> Callable:
    return lambda match, snapshot: Intent(IntentKind.REPORT, report=report)


def _typed(kind: IntentKind, doc_type: DocumentType) -> Callable:
    return lambda match, snapshot: Intent(
        kind, doc_type=doc_type, number=int(match.group(1)), company=match.group(2),
    )


def _matching_companies(snapshot: Optional[dict], doc_type: DocumentType, number: int) -> list[str]:
    """某类型下编号为 number 的单据所属公司（每个单据一项）"""
    if not snapshot:
        return []
    return [
        doc.get("company") or ""
        for doc in snapshot.get(DOCUMENT_COLLECTIONS[doc_type.value], [])
        if doc.get("number") == number and doc.get("doc_type", doc_type.value) == doc_type.value
    ]


def _generic(match: re.Match, snapshot: Optional[dict]) -> Intent:
    word, number = match.group(1), int(match.group(2))
    kind = IntentKind.REJECT if re.fullmatch(REJECT_WORDS, word, re.IGNORECASE) else IntentKind.APPROVE

    in_payments = _matching_companies(snapshot, DocumentType.PAYMENT, number)
    in_exits = _matching_companies(snapshot, DocumentType.EXIT_PERMIT, number)

    if in_payments and in_exits:
        return Intent(IntentKind.AMBIGUOUS, number=number, action=kind.value)
    for doc_type, companies in ((DocumentType.PAYMENT, in_payments), (DocumentType.EXIT_PERMIT, in_exits)):
        if len(companies) > 1:
            return Intent(
                IntentKind.AMBIGUOUS,
                doc_type=doc_type,
                number=number,
                action=kind.value,
                companies=tuple(sorted(set(companies))),
            )
    if in_payments:
        return Intent(kind, doc_type=DocumentType.PAYMENT, number=number)
    if in_exits:
        return Intent(kind, doc_type=DocumentType.EXIT_PERMIT, number=number)
    return Intent(IntentKind.NOT_FOUND, number=number, action=kind.value)


def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def _build_rules() -> list[Rule]:
    rules = [
        Rule("report_payment", _compile(r"^(?:📂 )?(?:کارتابل پرداخت|لیست پرداخت)$"), _report("payment")),
        Rule("report_exit", _compile(r"^(?:📂 )?(?:کارتابل خروج|لیست خروج)$"), _report("exit_permit")),
        Rule("report_bijak", _compile(r"^(?:📂 )?(?:کارتابل بیجک|لیست انبار)$"), _report("bijak")),
        Rule("report_general", _compile(r"^(?:📊 )?(?:گزارشات کلی|گزارشات|report)$"), _report("general")),
        Rule("archive", _compile(r"^(?:🔍 |🏁 )?(?:بایگانی|آرشیو|جستجو و آرشیو|آرشیو نهایی)$"),
             lambda match, snapshot: Intent(IntentKind.ARCHIVE)),
    ]

    for doc_type, keywords in TYPE_KEYWORDS.items():
        rules.append(Rule(
            f"approve_{doc_type.value}",
            _compile(rf"^{APPROVE_WORDS}\s*{keywords}\s*(\d+)(?:\s+(.+))?$"),
            _typed(IntentKind.APPROVE, doc_type),
        ))
        rules.append(Rule(
            f"reject_{doc_type.value}",
            _compile(rf"^{REJECT_WORDS}\s*{keywords}\s*(\d+)(?:\s+(.+))?$"),
            _typed(IntentKind.REJECT, doc_type),
        ))

    rules.append(Rule(
        "generic",
        _compile(rf"^({APPROVE_WORDS}|{REJECT_WORDS})\s+(\d+)$"),
        _generic,
    ))
    rules.append(Rule(
        "help",
        _compile(r"^(?:/help|راهنما|help)$"),
        lambda match, snapshot: Intent(IntentKind.HELP),
    ))
    return rules


RULES = _build_rules()


def parse(text: str, snapshot: Optional[dict] = None) -> Optional[Intent]:
    """
    解析聊天命令

    Args:
        text: 用户输入
        snapshot: 文档库快照（不带类型的命令需要用它查编号）

    Returns:
        Intent 或 None（不是命令）
    """
    text = normalize(text)
    if not text:
        return None
    for rule in RULES:
        match = rule.pattern.match(text)
        if match:
            return rule.build(match, snapshot)
    return None
