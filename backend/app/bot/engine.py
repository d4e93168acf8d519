# app/bot/engine.py
# 聊天会话引擎
#
# 功能说明：
# 1. 按聊天身份找到系统用户（找不到的一律回复"无权访问"，不做任何操作）
# 2. 多步录入向导：付款单（金额 → 收款人 → 用途）、出门证、出库单
# 3. 菜单按钮、文字命令（تایید پرداخت 1001）和内联按钮回调
# 4. 待办、归档搜索、库存、汇总报表
#
# 每条消息的处理顺序：
#   身份 → 重置命令 → 进行中的向导步骤 → 菜单按钮 → 文字命令 → 兜底提示
#
# 使用方法：
#   engine = ConversationEngine("bale")
#   reply = await engine.handle_message(chat_id, "💰 پرداخت‌ها")
#   await client.send_text(chat_id, reply.text, reply.keyboard)

import re
from dataclasses import dataclass
from typing import Optional

from app.bot import messages as bot_messages
from app.bot.parser import IntentKind, normalize, parse
from app.bot.session import ConversationState, Session, SessionStore, create_session_store
from app.core.config import settings
from app.core.exceptions import AmbiguousNumber, ApprovalDeskError, PermissionDenied
from app.core.logging import get_logger
from app.notifications.messages import document_summary, parse_callback_token
from app.schemas.document import ArchiveSearchMode, DocumentType, TransitionAction
from app.services.document_service import CREATE_CAPABILITIES, DocumentService, document_service
from app.services.user_service import UserService, user_service
from app.services.warehouse_service import WarehouseService, warehouse_service

logger = get_logger(__name__)


@dataclass
class BotReply:
    """机器人回复：文字 + 可选键盘"""
    text: str
    keyboard: Optional[dict] = None


# 金额中允许出现的千分位符号
_AMOUNT_SEPARATORS = re.compile(r"[,٬،\s]")


def parse_amount(text: str) -> Optional[int]:
    """"1,500,000" / "۱۵۰۰۰۰۰" → 1500000，无效或非正数返回 None"""
    cleaned = _AMOUNT_SEPARATORS.sub("", normalize(text))
    if not cleaned.isdigit():
        return None
    value = int(cleaned)
    return value if value > 0 else None


def parse_quantity(text: str) -> Optional[float]:
    cleaned = _AMOUNT_SEPARATORS.sub("", normalize(text)).replace("/", ".")
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if value > 0 else None


def _key(text: str) -> str:
    return normalize(text).lower()


_RESET_KEYS = {_key(t) for t in bot_messages.RESET_COMMANDS}


class ConversationEngine:
    """
    会话引擎

    每个平台（telegram / bale）一个实例，由对应的机器人 Worker 持有。
    业务规则全部委托给服务层，这里只负责对话流程和文字。
    """

    def __init__(
        self,
        platform: str,
        documents: Optional[DocumentService] = None,
        users: Optional[UserService] = None,
        warehouse: Optional[WarehouseService] = None,
        sessions: Optional[SessionStore] = None,
        archive_limit: Optional[int] = None,
        max_length: Optional[int] = None,
    ):
        self.platform = platform
        self.documents = documents or document_service
        self.users = users or user_service
        self.warehouse = warehouse or warehouse_service
        self.sessions = sessions or create_session_store()
        self.archive_limit = archive_limit or settings.ARCHIVE_MAX_RESULTS
        self.max_length = max_length or settings.MESSAGE_MAX_LENGTH

        self._menu_actions = {
            _key(bot_messages.BTN_PAYMENTS): lambda user, session: self._submenu(bot_messages.PAYMENT_MENU),
            _key(bot_messages.BTN_EXITS): lambda user, session: self._submenu(bot_messages.EXIT_MENU),
            _key(bot_messages.BTN_WAREHOUSE): lambda user, session: self._submenu(bot_messages.WAREHOUSE_MENU),
            _key(bot_messages.BTN_REPORTS): lambda user, session: self._summary(),
            _key(bot_messages.BTN_MESSAGES): lambda user, session: self._web_only(),
            _key(bot_messages.BTN_SETTINGS): lambda user, session: self._web_only(),
            _key(bot_messages.BTN_NEW_PAYMENT): lambda user, session: self._start_wizard(
                user, session, DocumentType.PAYMENT, ConversationState.PAY_AMOUNT, bot_messages.PROMPT_AMOUNT),
            _key(bot_messages.BTN_NEW_EXIT): lambda user, session: self._start_wizard(
                user, session, DocumentType.EXIT_PERMIT, ConversationState.EXIT_RECIPIENT,
                bot_messages.PROMPT_EXIT_RECIPIENT),
            _key(bot_messages.BTN_NEW_BIJAK): lambda user, session: self._start_wizard(
                user, session, DocumentType.BIJAK, ConversationState.BIJAK_ITEM, bot_messages.PROMPT_BIJAK_ITEM),
            _key(bot_messages.BTN_PAYMENT_CARTABLE): lambda user, session: self._cartable(user, DocumentType.PAYMENT),
            _key(bot_messages.BTN_EXIT_CARTABLE): lambda user, session: self._cartable(user, DocumentType.EXIT_PERMIT),
            _key(bot_messages.BTN_BIJAK_CARTABLE): lambda user, session: self._cartable(user, DocumentType.BIJAK),
            _key(bot_messages.BTN_PAYMENT_ARCHIVE): lambda user, session: self._start_archive(
                session, DocumentType.PAYMENT),
            _key(bot_messages.BTN_EXIT_ARCHIVE): lambda user, session: self._start_archive(
                session, DocumentType.EXIT_PERMIT),
            _key(bot_messages.BTN_STOCK): lambda user, session: self._stock(),
        }

        self._steps = {
            ConversationState.PAY_AMOUNT.value: self._step_pay_amount,
            ConversationState.PAY_PAYEE.value: self._step_pay_payee,
            ConversationState.PAY_DESCRIPTION.value: self._step_pay_description,
            ConversationState.EXIT_RECIPIENT.value: self._step_exit_recipient,
            ConversationState.EXIT_GOODS.value: self._step_exit_goods,
            ConversationState.EXIT_COUNT.value: self._step_exit_count,
            ConversationState.BIJAK_ITEM.value: self._step_bijak_item,
            ConversationState.BIJAK_COUNT.value: self._step_bijak_count,
            ConversationState.BIJAK_RECIPIENT.value: self._step_bijak_recipient,
            ConversationState.ARCHIVE_NUMBER.value: self._step_archive_number,
            ConversationState.ARCHIVE_DATE.value: self._step_archive_date,
        }

    def session_key(self, chat_id) -> str:
        return f"{self.platform}:{chat_id}"

    # ==================== 入口 ====================

    async def handle_message(self, chat_id, text: str) -> BotReply:
        """
        处理一条文字消息

        Args:
            chat_id: 平台 chat id
            text: 消息内容

        Returns:
            BotReply: 回复内容
        """
        user = await self.users.find_by_chat(self.platform, chat_id)
        if user is None:
            logger.info(f"[ConversationEngine] 未授权的聊天身份: {self.platform}:{chat_id}")
            return BotReply(bot_messages.NO_ACCESS.format(chat_id=chat_id))

        key = self.session_key(chat_id)
        session = await self.sessions.get(key)
        text = normalize(text)

        try:
            if _key(text) in _RESET_KEYS:
                session.reset()
                reply = self._main_menu(user)
            elif session.state != ConversationState.IDLE.value:
                reply = await self._continue(user, session, text)
            else:
                reply = await self._handle_idle(user, session, text)
        except ApprovalDeskError as e:
            logger.info(f"[ConversationEngine] {user.get('username')}: {type(e).__name__}: {e.message}")
            session.reset()
            reply = BotReply(bot_messages.error_message(e), self._main_keyboard())

        await self.sessions.save(key, session)
        return reply

    async def handle_callback(self, chat_id, data: str) -> BotReply:
        """
        处理内联按钮回调（approve:<type>:<id> / reject:<type>:<id>）
        """
        user = await self.users.find_by_chat(self.platform, chat_id)
        if user is None:
            return BotReply(bot_messages.NO_ACCESS.format(chat_id=chat_id))

        token = parse_callback_token(data)
        if token is None:
            logger.warning(f"[ConversationEngine] 无法识别的回调数据: {data}")
            return BotReply(bot_messages.FALLBACK)

        action, doc_type, document_id = token
        try:
            document = await self.documents.transition_document(doc_type, document_id, action, actor=user)
        except ApprovalDeskError as e:
            logger.info(f"[ConversationEngine] 回调失败 {data}: {type(e).__name__}")
            return BotReply(bot_messages.error_message(e))
        return BotReply(bot_messages.transition_message(document))

    # ==================== 空闲状态 ====================

    async def _handle_idle(self, user: dict, session: Session, text: str) -> BotReply:
        action = self._menu_actions.get(_key(text))
        if action is not None:
            return await action(user, session)

        snapshot = await self.documents.store.read()
        intent = parse(text, snapshot)
        if intent is None:
            return BotReply(bot_messages.FALLBACK, self._main_keyboard())

        if intent.kind in (IntentKind.APPROVE, IntentKind.REJECT):
            try:
                document = await self.documents.transition_by_number(
                    intent.doc_type, intent.number, intent.kind.value, actor=user, company=intent.company,
                )
            except AmbiguousNumber as e:
                return BotReply(bot_messages.ambiguous_company_message(
                    intent.doc_type.value, intent.number, e.context.get("companies", ()), intent.kind.value,
                ))
            return BotReply(bot_messages.transition_message(document))

        if intent.kind == IntentKind.AMBIGUOUS and intent.companies:
            return BotReply(bot_messages.ambiguous_company_message(
                intent.doc_type.value, intent.number, intent.companies, intent.action,
            ))

        if intent.kind == IntentKind.AMBIGUOUS:
            word = "رد" if intent.action == TransitionAction.REJECT.value else "تایید"
            return BotReply(bot_messages.AMBIGUOUS.format(number=intent.number, word=word))

        if intent.kind == IntentKind.NOT_FOUND:
            return BotReply(bot_messages.NUMBER_NOT_FOUND.format(number=intent.number))

        if intent.kind == IntentKind.REPORT:
            if intent.report == "general":
                return await self._summary()
            return await self._cartable(user, DocumentType(intent.report))

        if intent.kind == IntentKind.ARCHIVE:
            return await self._start_archive(session, None)

        return BotReply(bot_messages.HELP)

    def _main_keyboard(self) -> dict:
        return bot_messages.reply_keyboard(bot_messages.MAIN_MENU)

    def _main_menu(self, user: dict) -> BotReply:
        name = user.get("full_name") or user.get("username", "")
        return BotReply(bot_messages.WELCOME.format(name=name), self._main_keyboard())

    async def _submenu(self, rows: list[list[str]]) -> BotReply:
        return BotReply(bot_messages.CHOOSE_OPTION, bot_messages.reply_keyboard(rows))

    async def _web_only(self) -> BotReply:
        return BotReply(bot_messages.WEB_ONLY)

    async def _start_wizard(
        self,
        user: dict,
        session: Session,
        doc_type: DocumentType,
        state: ConversationState,
        prompt: str,
    ) -> BotReply:
        # 没有创建权限时不进入向导
        perms = await self.users.permissions_for(user)
        if not perms.get(CREATE_CAPABILITIES[doc_type]):
            raise PermissionDenied(f"角色 {user.get('role')} 不能创建 {doc_type.value}")
        session.start(state)
        return BotReply(prompt, {"remove_keyboard": True})

    async def _start_archive(self, session: Session, doc_type: Optional[DocumentType]) -> BotReply:
        session.start(ConversationState.ARCHIVE_NUMBER, doc_type=doc_type.value if doc_type else None)
        return BotReply(bot_messages.PROMPT_ARCHIVE_NUMBER)

    # ==================== 报表 ====================

    async def _cartable(self, user: dict, doc_type: DocumentType) -> BotReply:
        pending = await self.documents.cartable(user, doc_type)
        if not pending:
            return BotReply(bot_messages.CARTABLE_EMPTY)
        text = bot_messages.format_document_list(
            [bot_messages.cartable_entry(doc) for doc in pending],
            f"📂 کارتابل ({len(pending)})",
            self.max_length,
        )
        return BotReply(text)

    async def _summary(self) -> BotReply:
        summary = await self.documents.status_summary()
        return BotReply(bot_messages.format_summary(summary))

    async def _stock(self) -> BotReply:
        rows = await self.warehouse.stock()
        return BotReply(bot_messages.format_stock(rows))

    async def _archive_results(self, session: Session, query: str, by: ArchiveSearchMode) -> BotReply:
        results = await self.documents.search_archive(query, session.data.get("doc_type"), by=by)
        session.reset()
        if not results:
            return BotReply(bot_messages.ARCHIVE_EMPTY, self._main_keyboard())
        shown = results[:self.archive_limit]
        text = bot_messages.format_document_list(
            [document_summary(doc) for doc in shown],
            f"🔍 نتایج جستجو ({len(results)})",
            self.max_length,
            total=len(results),
        )
        return BotReply(text, self._main_keyboard())

    # ==================== 向导步骤 ====================

    async def _continue(self, user: dict, session: Session, text: str) -> BotReply:
        step = self._steps.get(session.state)
        if step is None:
            logger.warning(f"[ConversationEngine] 未知会话状态，已重置: {session.state}")
            session.reset()
            return self._main_menu(user)
        return await step(user, session, text)

    async def _step_pay_amount(self, user: dict, session: Session, text: str) -> BotReply:
        amount = parse_amount(text)
        if amount is None:
            return BotReply(bot_messages.INVALID_AMOUNT)
        session.data["amount"] = amount
        session.state = ConversationState.PAY_PAYEE.value
        return BotReply(bot_messages.PROMPT_PAYEE)

    async def _step_pay_payee(self, user: dict, session: Session, text: str) -> BotReply:
        if not text:
            return BotReply(bot_messages.EMPTY_INPUT)
        session.data["payee"] = text
        session.state = ConversationState.PAY_DESCRIPTION.value
        return BotReply(bot_messages.PROMPT_DESCRIPTION)

    async def _step_pay_description(self, user: dict, session: Session, text: str) -> BotReply:
        payload = {
            "amount": session.data.get("amount"),
            "payee": session.data.get("payee", ""),
            "description": text,
        }
        return await self._create(user, session, DocumentType.PAYMENT, payload)

    async def _step_exit_recipient(self, user: dict, session: Session, text: str) -> BotReply:
        if not text:
            return BotReply(bot_messages.EMPTY_INPUT)
        session.data["recipient_name"] = text
        session.state = ConversationState.EXIT_GOODS.value
        return BotReply(bot_messages.PROMPT_EXIT_GOODS)

    async def _step_exit_goods(self, user: dict, session: Session, text: str) -> BotReply:
        if not text:
            return BotReply(bot_messages.EMPTY_INPUT)
        session.data["goods_name"] = text
        session.state = ConversationState.EXIT_COUNT.value
        return BotReply(bot_messages.PROMPT_EXIT_COUNT)

    async def _step_exit_count(self, user: dict, session: Session, text: str) -> BotReply:
        count = parse_amount(text)
        if count is None:
            return BotReply(bot_messages.INVALID_COUNT)
        payload = {
            "recipient_name": session.data.get("recipient_name", ""),
            "goods_name": session.data.get("goods_name", ""),
            "carton_count": count,
        }
        return await self._create(user, session, DocumentType.EXIT_PERMIT, payload)

    async def _step_bijak_item(self, user: dict, session: Session, text: str) -> BotReply:
        if not text:
            return BotReply(bot_messages.EMPTY_INPUT)
        session.data["item_name"] = text
        session.state = ConversationState.BIJAK_COUNT.value
        return BotReply(bot_messages.PROMPT_BIJAK_COUNT)

    async def _step_bijak_count(self, user: dict, session: Session, text: str) -> BotReply:
        quantity = parse_quantity(text)
        if quantity is None:
            return BotReply(bot_messages.INVALID_COUNT)
        session.data["quantity"] = quantity
        session.state = ConversationState.BIJAK_RECIPIENT.value
        return BotReply(bot_messages.PROMPT_BIJAK_RECIPIENT)

    async def _step_bijak_recipient(self, user: dict, session: Session, text: str) -> BotReply:
        payload = {
            "items": [{"item_name": session.data.get("item_name", ""), "quantity": session.data.get("quantity")}],
            "recipient_name": text,
        }
        return await self._create(user, session, DocumentType.BIJAK, payload)

    async def _step_archive_number(self, user: dict, session: Session, text: str) -> BotReply:
        if text == bot_messages.ARCHIVE_BY_DATE:
            session.state = ConversationState.ARCHIVE_DATE.value
            return BotReply(bot_messages.PROMPT_ARCHIVE_DATE)
        if not text.isdigit():
            return BotReply(bot_messages.INVALID_ARCHIVE_NUMBER)
        return await self._archive_results(session, text, ArchiveSearchMode.NUMBER)

    async def _step_archive_date(self, user: dict, session: Session, text: str) -> BotReply:
        if not text:
            return BotReply(bot_messages.EMPTY_INPUT)
        return await self._archive_results(session, text, ArchiveSearchMode.DATE)

    async def _create(self, user: dict, session: Session, doc_type: DocumentType, payload: dict) -> BotReply:
        document = await self.documents.create_document(doc_type, payload, actor=user)
        session.reset()
        logger.info(f"[ConversationEngine] {user.get('username')} 通过 {self.platform} 创建 {doc_type.value} #{document['number']}")
        return BotReply(bot_messages.created_message(document), self._main_keyboard())
