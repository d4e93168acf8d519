# app/services/document_service.py
# 单据服务层
#
# 功能说明：
# 1. 单据的创建、状态流转、修改、删除、查询
# 2. HTTP 接口和聊天机器人共用这一层，权限检查只在这里做一次
# 3. 每个写操作的顺序固定为：读 → 计算 → 写（同一个文档库事务内）→ 通知（后台）
# 4. 报表：待办（cartable）、归档搜索、状态汇总
#
# 使用方法：
#   from app.services import document_service
#
#   order = await document_service.create_document(
#       "payment", {"payee": "...", "amount": 1000}, actor=user,
#   )
#   order = await document_service.transition_document(
#       "payment", order["id"], "approve", actor=financial_user,
#   )

import time
from datetime import date as date_type
from typing import Optional
from uuid import uuid4

from app.core.config import settings
from app.core.exceptions import (
    AmbiguousNumber,
    DocumentNotFound,
    PermissionDenied,
    TransitionNotAllowed,
    ValidationFailed,
)
from app.core.logging import get_logger, log_execution
from app.notifications import messages
from app.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationTarget,
    notification_dispatcher,
)
from app.schemas.document import (
    ArchiveSearchMode,
    DocumentType,
    TransitionAction,
    validate_payload,
)
from app.storage.document_store import (
    DOCUMENT_COLLECTIONS,
    JsonDocumentStore,
    document_store,
)
from app.workflow.chains import get_chain
from app.workflow.engine import apply_transition, authorize, transition
from app.workflow.permissions import has_capability, user_permissions
from app.workflow.sequence import commit_number, next_number

logger = get_logger(__name__)


# 创建单据所需权限
CREATE_CAPABILITIES = {
    DocumentType.PAYMENT: "can_create_payment_order",
    DocumentType.EXIT_PERMIT: "can_create_exit_permit",
    DocumentType.BIJAK: "can_manage_warehouse",
    DocumentType.RECEIPT: "can_manage_warehouse",
}

# 出现在待办和归档中的单据类型
WORKFLOW_TYPES = (DocumentType.PAYMENT, DocumentType.EXIT_PERMIT, DocumentType.BIJAK)


def _now_ms() -> int:
    return int(time.time() * 1000)


def display_name(user: dict) -> str:
    return user.get("full_name") or user.get("username") or ""


def documents_of(snapshot: dict, doc_type) -> list[dict]:
    """快照中某类型的全部单据（出库单和入库单共用一个集合）"""
    doc_type = DocumentType(doc_type)
    return [
        doc for doc in snapshot.get(DOCUMENT_COLLECTIONS[doc_type.value], [])
        if doc.get("doc_type", doc_type.value) == doc_type.value
    ]


def _find_by_number(snapshot: dict, doc_type, number: int, company: Optional[str] = None) -> dict:
    """
    按编号查找单据

    出库单和入库单按公司分别编号，不同公司可能有相同编号；
    指定 company 时只在该公司内查找，否则多于一个匹配时报错，不猜测
    """
    matches = [d for d in documents_of(snapshot, doc_type) if d.get("number") == number]
    if company is not None:
        matches = [d for d in matches if (d.get("company") or "") == company]
    if not matches:
        raise DocumentNotFound(
            f"单据不存在: {doc_type} #{number}",
            doc_type=str(doc_type),
            number=number,
        )
    if len(matches) > 1:
        companies = sorted({d.get("company") or "" for d in matches})
        raise AmbiguousNumber(
            f"编号 {number} 对应多个单据，请指定公司: {', '.join(companies)}",
            number=number,
            companies=companies,
        )
    return matches[0]


def _find(snapshot: dict, doc_type, doc_id: str) -> dict:
    for doc in documents_of(snapshot, doc_type):
        if doc.get("id") == doc_id:
            return doc
    raise DocumentNotFound(f"单据不存在: {doc_type}/{doc_id}", doc_type=str(doc_type), id=doc_id)


class DocumentService:
    """
    单据服务

    store / dispatcher 可注入，测试时使用临时文件和假渠道
    """

    def __init__(
        self,
        store: Optional[JsonDocumentStore] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.store = store or document_store
        self.dispatcher = dispatcher or notification_dispatcher

    # ==================== 查询 ====================

    async def list_documents(
        self,
        doc_type,
        status: Optional[str] = None,
        company: Optional[str] = None,
    ) -> list[dict]:
        snapshot = await self.store.read()
        docs = documents_of(snapshot, doc_type)
        if status:
            docs = [d for d in docs if d.get("status") == status]
        if company is not None:
            docs = [d for d in docs if (d.get("company") or "") == company]
        return sorted(docs, key=lambda d: d.get("number", 0), reverse=True)

    async def get_document(self, doc_type, doc_id: str) -> dict:
        snapshot = await self.store.read()
        return _find(snapshot, doc_type, doc_id)

    async def find_by_number(self, doc_type, number: int, company: Optional[str] = None) -> dict:
        snapshot = await self.store.read()
        return _find_by_number(snapshot, doc_type, number, company)

    @log_execution()
    async def preview_next_number(self, doc_type, company: Optional[str] = None) -> int:
        """预览下一个编号（不占用）"""
        snapshot = await self.store.read()
        company = company if company is not None else snapshot["settings"].get("default_company", "")
        return next_number(snapshot, doc_type, company)

    # ==================== 创建 ====================

    async def create_document(
        self,
        doc_type,
        payload: dict,
        actor: dict,
        company: Optional[str] = None,
        date: Optional[str] = None,
    ) -> dict:
        """
        创建单据

        Args:
            doc_type: 单据类型
            payload: 业务字段
            actor: 创建人（用户记录）
            company: 公司，不填使用默认公司
            date: 单据日期，不填使用当天

        Returns:
            dict: 新单据

        Raises:
            ValidationFailed: 业务字段不合法
            PermissionDenied: 没有创建权限
        """
        doc_type = DocumentType(doc_type)
        clean_payload = validate_payload(doc_type, payload)
        chain = get_chain(doc_type)

        async with self.store.transaction() as data:
            store_settings = data["settings"]
            if not has_capability(actor, CREATE_CAPABILITIES[doc_type], store_settings.get("role_permissions")):
                raise PermissionDenied(
                    f"角色 {actor.get('role')} 不能创建 {doc_type.value}",
                    capability=CREATE_CAPABILITIES[doc_type],
                )

            company = company if company is not None else store_settings.get("default_company", "")
            number = next_number(data, doc_type, company)
            commit_number(data, doc_type, company, number)

            now = _now_ms()
            document = {
                "id": uuid4().hex,
                "doc_type": doc_type.value,
                "number": number,
                "status": chain.initial_status,
                "company": company,
                "requester": display_name(actor),
                "requester_username": actor.get("username", ""),
                "date": date or date_type.today().isoformat(),
                "approvals": {},
                "rejected_by": None,
                "rejection_reason": None,
                "payload": clean_payload,
                "history": [],
                "created_at": now,
                "updated_at": now,
            }
            data[DOCUMENT_COLLECTIONS[doc_type.value]].append(document)
            group_chats = store_settings.get("exit_permit_notification_groups") or {}

        logger.info(f"[DocumentService] 创建 {doc_type.value} #{number} (公司: {company or '-'}, 申请人: {document['requester_username']})")

        first_stage = chain.stage_for(chain.initial_status)
        if first_stage:
            self.dispatcher.notify_in_background(
                [NotificationTarget.for_role(role) for role in first_stage.responsible_roles],
                messages.awaiting_action_message(document),
                document=document,
                with_actions=True,
                group_chats=group_chats if doc_type == DocumentType.EXIT_PERMIT else None,
            )
        return document

    # ==================== 状态流转 ====================

    async def transition_document(
        self,
        doc_type,
        doc_id: str,
        action,
        actor: dict,
        reason: Optional[str] = None,
    ) -> dict:
        """
        审批 / 驳回 / 撤销

        权限检查在状态机之前；检查失败或不可流转时不做任何修改。

        Raises:
            DocumentNotFound: 单据不存在
            PermissionDenied: 没有当前阶段的权限
            TransitionNotAllowed: 单据已在终态
        """
        return await self._transition(doc_type, action, actor, reason, doc_id=doc_id)

    async def transition_by_number(
        self,
        doc_type,
        number: int,
        action,
        actor: dict,
        reason: Optional[str] = None,
        company: Optional[str] = None,
    ) -> dict:
        """
        按编号流转（聊天命令 "تایید پرداخت 1001" 使用）

        Raises:
            AmbiguousNumber: 未指定公司且多个公司有相同编号
        """
        return await self._transition(doc_type, action, actor, reason, number=number, company=company)

    async def _transition(
        self,
        doc_type,
        action,
        actor: dict,
        reason: Optional[str],
        doc_id: Optional[str] = None,
        number: Optional[int] = None,
        company: Optional[str] = None,
    ) -> dict:
        doc_type = DocumentType(doc_type)
        action = TransitionAction(action)

        async with self.store.transaction() as data:
            if doc_id is not None:
                document = _find(data, doc_type, doc_id)
            else:
                document = _find_by_number(data, doc_type, number, company)

            role_permissions = data["settings"].get("role_permissions")
            authorize(actor, doc_type, document["status"], action, role_permissions)

            result = transition(doc_type, document["status"], actor.get("role"), action)
            if not result.changed:
                raise TransitionNotAllowed(
                    f"{doc_type.value} #{document['number']} 状态 {document['status']} 不可执行 {action.value}",
                    status=document["status"],
                    action=action.value,
                )

            apply_transition(document, result, display_name(actor), reason)
            group_chats = data["settings"].get("exit_permit_notification_groups") or {}

        logger.info(
            f"[DocumentService] {doc_type.value} #{document['number']}: "
            f"{result.previous_status} -> {result.next_status} (操作人: {actor.get('username')})"
        )
        self._notify_transition(document, result, group_chats)
        return document

    def _notify_transition(self, document: dict, result, group_chats: dict) -> None:
        chain = get_chain(document["doc_type"])
        requester = document.get("requester_username")
        is_exit = document["doc_type"] == DocumentType.EXIT_PERMIT.value

        if result.next_roles:
            self.dispatcher.notify_in_background(
                [NotificationTarget.for_role(role) for role in result.next_roles],
                messages.awaiting_action_message(document),
                document=document,
                with_actions=True,
            )
            return

        if not requester:
            return

        if result.next_status == chain.final_status and result.action == TransitionAction.APPROVE.value:
            text = messages.approved_final_message(document)
        elif result.next_status == chain.final_status:
            text = messages.revocation_cancelled_message(document)
        elif result.next_status == chain.revoked_status:
            text = messages.revoked_message(document)
        else:
            text = messages.rejected_message(document)

        self.dispatcher.notify_in_background(
            [NotificationTarget.for_user(requester)],
            text,
            document=document,
            group_chats=group_chats if (is_exit and result.next_status == chain.final_status) else None,
        )

    # ==================== 修改 / 删除 ====================

    def _check_owner(self, document: dict, actor: dict, capability: str, role_permissions) -> None:
        if actor.get("role") == "admin":
            return
        if document.get("requester_username") != actor.get("username"):
            raise PermissionDenied("只能修改或删除自己创建的单据")
        if not has_capability(actor, capability, role_permissions):
            raise PermissionDenied(f"角色 {actor.get('role')} 没有权限 {capability}")

    async def update_document(
        self,
        doc_type,
        doc_id: str,
        payload: dict,
        actor: dict,
        date: Optional[str] = None,
    ) -> dict:
        """
        修改业务字段（不影响状态、编号和审批记录）

        非管理员只能修改自己创建、且仍处于初始状态的单据
        """
        doc_type = DocumentType(doc_type)
        clean_payload = validate_payload(doc_type, payload)

        async with self.store.transaction() as data:
            document = _find(data, doc_type, doc_id)
            self._check_owner(document, actor, "can_edit_own", data["settings"].get("role_permissions"))
            if actor.get("role") != "admin" and document["status"] != get_chain(doc_type).initial_status:
                raise TransitionNotAllowed("单据已进入审批流程，不能再修改", status=document["status"])

            document["payload"] = clean_payload
            if date:
                document["date"] = date
            document["updated_at"] = _now_ms()

        logger.info(f"[DocumentService] 修改 {doc_type.value} #{document['number']} (操作人: {actor.get('username')})")
        return document

    async def delete_document(self, doc_type, doc_id: str, actor: dict) -> None:
        doc_type = DocumentType(doc_type)
        async with self.store.transaction() as data:
            document = _find(data, doc_type, doc_id)
            self._check_owner(document, actor, "can_delete_own", data["settings"].get("role_permissions"))
            collection = data[DOCUMENT_COLLECTIONS[doc_type.value]]
            collection[:] = [d for d in collection if d.get("id") != doc_id]

        logger.info(f"[DocumentService] 删除 {doc_type.value} #{document['number']} (操作人: {actor.get('username')})")

    # ==================== 报表 ====================

    async def cartable(self, user: dict, doc_type=None) -> list[dict]:
        """
        待办：当前阶段需要该用户审批的单据

        Args:
            user: 用户
            doc_type: 只看某一类型，不填看全部
        """
        snapshot = await self.store.read()
        perms = user_permissions(user, snapshot["settings"].get("role_permissions"))
        types = [DocumentType(doc_type)] if doc_type else list(WORKFLOW_TYPES)

        pending = []
        for t in types:
            chain = get_chain(t)
            for doc in documents_of(snapshot, t):
                stage = chain.stage_for(doc.get("status", ""))
                if stage and perms.get(stage.capability):
                    pending.append(doc)
        return sorted(pending, key=lambda d: (d["doc_type"], d.get("number", 0)))

    async def search_archive(
        self,
        query: str,
        doc_type=None,
        by: ArchiveSearchMode = ArchiveSearchMode.NUMBER,
    ) -> list[dict]:
        """
        归档搜索：只查终态单据，按编号精确匹配或按日期包含匹配

        搜索方式由调用方指定，纯数字的日期片段（如年份 2026）也按日期匹配

        Args:
            query: 编号或日期片段（如 2026-05）
            doc_type: 只查某一类型，不填查全部
            by: number / date

        Returns:
            list[dict]: 匹配的单据，编号倒序（由调用方截断）
        """
        query = (query or "").strip()
        if not query:
            raise ValidationFailed("搜索内容不能为空")

        by = ArchiveSearchMode(by)
        if by == ArchiveSearchMode.NUMBER and not query.isdigit():
            raise ValidationFailed(f"编号必须是数字: {query}", fields=["q"])

        snapshot = await self.store.read()
        types = [DocumentType(doc_type)] if doc_type else list(WORKFLOW_TYPES)

        results = []
        for t in types:
            terminal = get_chain(t).terminal_statuses
            for doc in documents_of(snapshot, t):
                if doc.get("status") not in terminal:
                    continue
                if by == ArchiveSearchMode.NUMBER:
                    if doc.get("number") == int(query):
                        results.append(doc)
                elif query in (doc.get("date") or ""):
                    results.append(doc)
        return sorted(results, key=lambda d: d.get("number", 0), reverse=True)

    async def status_summary(self) -> dict[str, dict[str, int]]:
        """各类型单据按状态计数"""
        snapshot = await self.store.read()
        summary: dict[str, dict[str, int]] = {}
        for t in WORKFLOW_TYPES:
            counts: dict[str, int] = {}
            for doc in documents_of(snapshot, t):
                counts[doc.get("status", "")] = counts.get(doc.get("status", ""), 0) + 1
            summary[t.value] = counts
        return summary


# 全局单例
document_service = DocumentService()
