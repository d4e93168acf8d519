# app/bot/messages.py
# 机器人菜单、提示语和回复格式化
#
# 面向用户的文字全部是波斯文；业务异常在这里映射为简短、具体的提示，
# 让聊天用户能区分"数字无效 / 找不到 / 已终审 / 无权限"。

from typing import Optional

from app.core.exceptions import (
    AmbiguousNumber,
    ApprovalDeskError,
    DocumentNotFound,
    PermissionDenied,
    TransitionNotAllowed,
    ValidationFailed,
)
from app.notifications.messages import document_summary
from app.workflow.chains import get_chain


# ==================== 菜单 ====================

BTN_PAYMENTS = "💰 پرداخت‌ها"
BTN_EXITS = "🚛 خروج کالا"
BTN_WAREHOUSE = "📦 انبار / بیجک"
BTN_REPORTS = "📊 گزارشات"
BTN_MESSAGES = "💬 پیام‌ها"
BTN_SETTINGS = "⚙️ تنظیمات"

BTN_NEW_PAYMENT = "➕ ثبت دستور پرداخت"
BTN_PAYMENT_CARTABLE = "📂 کارتابل پرداخت"
BTN_PAYMENT_ARCHIVE = "🔍 جستجو و آرشیو"

BTN_NEW_EXIT = "➕ ثبت مجوز خروج"
BTN_EXIT_CARTABLE = "📂 کارتابل خروج"
BTN_EXIT_ARCHIVE = "🏁 آرشیو نهایی"

BTN_NEW_BIJAK = "📦 ثبت بیجک"
BTN_BIJAK_CARTABLE = "📂 کارتابل بیجک"
BTN_STOCK = "📈 کاردکس کالا"

BTN_BACK = "🔙 بازگشت"

MAIN_MENU = [
    [BTN_PAYMENTS, BTN_EXITS],
    [BTN_WAREHOUSE, BTN_REPORTS],
    [BTN_MESSAGES, BTN_SETTINGS],
]
PAYMENT_MENU = [[BTN_NEW_PAYMENT, BTN_PAYMENT_CARTABLE], [BTN_PAYMENT_ARCHIVE, BTN_BACK]]
EXIT_MENU = [[BTN_NEW_EXIT, BTN_EXIT_CARTABLE], [BTN_EXIT_ARCHIVE, BTN_BACK]]
WAREHOUSE_MENU = [[BTN_NEW_BIJAK, BTN_BIJAK_CARTABLE], [BTN_STOCK, BTN_BACK]]

RESET_COMMANDS = ("/start", "/reset", "/cancel", "/menu", BTN_BACK, "لغو", "انصراف")


def reply_keyboard(rows: list[list[str]]) -> dict:
    return {
        "keyboard": [[{"text": text} for text in row] for row in rows],
        "resize_keyboard": True,
    }


# ==================== 提示语 ====================

WELCOME = "👋 {name} خوش آمدید. یکی از گزینه‌ها را انتخاب کنید:"
CHOOSE_OPTION = "یکی از گزینه‌ها را انتخاب کنید:"
NO_ACCESS = "⛔ شما به سیستم دسترسی ندارید.\nشناسه شما: {chat_id}\nاین شناسه را برای مدیر سیستم ارسال کنید."
FALLBACK = "دستور نامعتبر. از منو استفاده کنید."
WEB_ONLY = "این بخش فقط در نسخه وب در دسترس است."

PROMPT_AMOUNT = "💰 مبلغ را به ریال وارد کنید:"
INVALID_AMOUNT = "❌ مبلغ نامعتبر. لطفا عدد وارد کنید:"
PROMPT_PAYEE = "👤 نام گیرنده (ذینفع) را وارد کنید:"
PROMPT_DESCRIPTION = "📝 بابت (شرح) را وارد کنید:"

PROMPT_EXIT_RECIPIENT = "👤 نام گیرنده کالا را وارد کنید:"
PROMPT_EXIT_GOODS = "📦 نام کالا و اقلام را وارد کنید:"
PROMPT_EXIT_COUNT = "🔢 تعداد/مقدار را وارد کنید:"
INVALID_COUNT = "❌ تعداد نامعتبر. لطفا عدد وارد کنید:"

PROMPT_BIJAK_ITEM = "📦 نام کالای خروجی را وارد کنید:"
PROMPT_BIJAK_COUNT = "🔢 مقدار خروجی را وارد کنید:"
PROMPT_BIJAK_RECIPIENT = "👤 نام تحویل گیرنده را وارد کنید:"

EMPTY_INPUT = "❌ مقدار خالی است. دوباره وارد کنید:"

ARCHIVE_BY_DATE = "تاریخ"
PROMPT_ARCHIVE_NUMBER = f"🔍 شماره سند را وارد کنید (برای جستجو بر اساس تاریخ، کلمه «{ARCHIVE_BY_DATE}» را بفرستید):"
INVALID_ARCHIVE_NUMBER = "❌ شماره نامعتبر. شماره سند را به عدد وارد کنید:"
PROMPT_ARCHIVE_DATE = "📅 تاریخ یا بخشی از آن را وارد کنید (مثلا 2026-05):"
ARCHIVE_EMPTY = "📭 سندی یافت نشد."

CARTABLE_EMPTY = "✅ کارتابل شما خالی است."

HELP = (
    "📖 راهنما\n"
    "تایید پرداخت 1001 / رد پرداخت 1001\n"
    "تایید خروج 1001 / رد خروج 1001\n"
    "تایید بیجک 1001 / رد بیجک 1001\n"
    "(اگر شماره در چند شرکت تکراری است، نام شرکت را بعد از شماره بنویسید: تایید بیجک 1001 A)\n"
    "کارتابل پرداخت / کارتابل خروج / کارتابل بیجک\n"
    "/start برای بازگشت به منو"
)

AMBIGUOUS = (
    "⚠️ شماره {number} تکراری است. لطفا مشخص کنید:\n"
    "{word} پرداخت {number}\n"
    "{word} خروج {number}"
)
NUMBER_NOT_FOUND = "❌ سندی با شماره {number} یافت نشد."
AMBIGUOUS_COMPANY = (
    "⚠️ شماره {number} در چند شرکت ثبت شده است: {companies}\n"
    "لطفا نام شرکت را بعد از شماره بنویسید، مثلا:\n"
    "{word} {keyword} {number} {company}"
)

# 命令中的单据类型关键字
COMMAND_KEYWORDS = {"payment": "پرداخت", "exit_permit": "خروج", "bijak": "بیجک"}

TRUNCATED_MARKER = "… (لیست کوتاه شد)"
ENTRY_SEPARATOR = "\n------------------\n"

ERROR_MESSAGES = {
    AmbiguousNumber: "⚠️ این شماره در چند شرکت وجود دارد. لطفا نام شرکت را هم بنویسید.",
    ValidationFailed: "❌ اطلاعات وارد شده نامعتبر است.",
    DocumentNotFound: "❌ سند مورد نظر یافت نشد.",
    PermissionDenied: "⛔ شما مجوز انجام این عملیات را ندارید.",
    TransitionNotAllowed: "ℹ️ وضعیت این سند قابل تغییر نیست.",
}


def ambiguous_company_message(doc_type: str, number: int, companies, action: str) -> str:
    """同一类型多个公司共用编号时，提示用户在命令后加公司名"""
    names = [c or "-" for c in companies]
    example = next((c for c in companies if c), "")
    word = "رد" if action == "reject" else "تایید"
    return AMBIGUOUS_COMPANY.format(
        number=number,
        companies="، ".join(names),
        word=word,
        keyword=COMMAND_KEYWORDS.get(doc_type, ""),
        company=example,
    ).rstrip()


def error_message(error: ApprovalDeskError) -> str:
    for error_type, text in ERROR_MESSAGES.items():
        if isinstance(error, error_type):
            return text
    return "❌ خطا در انجام عملیات."


# ==================== 格式化 ====================

def created_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    return f"✅ {chain.label} با شماره {document['number']} ثبت شد و برای تایید ارسال گردید."


def transition_message(document: dict) -> str:
    chain = get_chain(document["doc_type"])
    return f"✅ {chain.label} #{document['number']}: {chain.label_for(document['status'])}"


def cartable_entry(document: dict) -> str:
    """待办条目：摘要 + 快捷命令"""
    keyword = COMMAND_KEYWORDS.get(document["doc_type"], "")
    return (
        f"{document_summary(document)}\n"
        f"👈 تایید {keyword} {document['number']} | رد {keyword} {document['number']}"
    )


def format_document_list(
    entries: list[str],
    title: str,
    max_length: int,
    total: Optional[int] = None,
) -> str:
    """
    拼接列表消息

    超过 max_length 时按整条截断，并追加 TRUNCATED_MARKER；
    total 大于 entries 数量（调用方已按条数截断）时同样追加标记。
    """
    text = title
    shown = 0
    budget = max_length - len(TRUNCATED_MARKER) - len(ENTRY_SEPARATOR)
    for entry in entries:
        candidate = text + ENTRY_SEPARATOR + entry if shown or title else entry
        if len(candidate) > budget:
            break
        text = candidate
        shown += 1

    total = len(entries) if total is None else total
    if shown < total:
        text += ENTRY_SEPARATOR + TRUNCATED_MARKER
    return text


def _quantity(value) -> str:
    return f"{float(value or 0):g}"


def format_stock(rows: list[dict]) -> str:
    if not rows:
        return "📭 کالایی ثبت نشده است."
    lines = ["📈 موجودی انبار"]
    for row in rows:
        lines.append(
            f"• {row['item_name']}: {_quantity(row['balance'])} "
            f"(ورود {_quantity(row['received'])} / خروج {_quantity(row['issued'])})"
        )
    return "\n".join(lines)


def format_summary(summary: dict[str, dict[str, int]]) -> str:
    lines = ["📊 گزارش کلی"]
    for doc_type, counts in summary.items():
        chain = get_chain(doc_type)
        lines.append(f"\n{chain.label}:")
        if not counts:
            lines.append("  -")
        for status, count in counts.items():
            lines.append(f"  {chain.label_for(status)}: {count}")
    return "\n".join(lines)
