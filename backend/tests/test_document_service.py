# tests/test_document_service.py
# 单据服务测试
#
# 运行方式：
#   cd backend
#   pytest tests/test_document_service.py -v

import pytest

from app.core.exceptions import (
    AmbiguousNumber,
    DocumentNotFound,
    PermissionDenied,
    TransitionNotAllowed,
    ValidationFailed,
)
from app.notifications.dispatcher import NotificationTarget


@pytest.fixture
def create_payment(documents, users_by_name, payment_payload):
    """以 sales 身份创建付款单"""
    async def _create(**fields):
        return await documents.create_document("payment", payment_payload(**fields), users_by_name["sales"])
    return _create


@pytest.fixture
def approve_to_final(documents, users_by_name):
    """把付款单审批到终态"""
    async def _approve(doc_id: str):
        doc = None
        for name in ("fin", "mgr", "ceo"):
            doc = await documents.transition_document("payment", doc_id, "approve", users_by_name[name])
        return doc
    return _approve


class TestCreateDocument:
    """创建单据"""

    @pytest.mark.asyncio
    async def test_create_payment(self, documents, create_payment, recorder):
        doc = await create_payment()

        assert doc["number"] == 1001
        assert doc["status"] == "pending_financial"
        assert doc["requester_username"] == "sales"
        assert doc["requester"] == "Sales User"
        assert doc["payload"]["amount"] == 1500000

        # 通知第一阶段的审批角色，附带审批按钮
        assert len(recorder.calls) == 1
        call = recorder.calls[0]
        assert call["targets"] == [NotificationTarget.for_role("financial")]
        assert call["with_actions"] is True
        assert call["document"]["id"] == doc["id"]

    @pytest.mark.asyncio
    async def test_invalid_payload_rejected(self, documents, users_by_name):
        with pytest.raises(ValidationFailed) as exc_info:
            await documents.create_document("payment", {"amount": "abc", "payee": "Ali"}, users_by_name["sales"])
        assert "amount" in exc_info.value.context["fields"]
        assert await documents.list_documents("payment") == []

    @pytest.mark.asyncio
    async def test_create_without_capability(self, documents, users_by_name, payment_payload, recorder):
        with pytest.raises(PermissionDenied):
            await documents.create_document("payment", payment_payload(), users_by_name["guard"])
        assert await documents.list_documents("payment") == []
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_exit_permit_notifies_ceo_and_groups(self, documents, store, users_by_name):
        async with store.transaction() as data:
            data["settings"]["exit_permit_notification_groups"] = {"bale": ["-100"]}

        doc = await documents.create_document(
            "exit_permit",
            {"recipient_name": "Reza", "goods_name": "Tile", "carton_count": 12},
            users_by_name["sales"],
        )

        assert doc["status"] == "pending_ceo"
        call = documents.dispatcher.calls[-1]
        assert call["targets"] == [NotificationTarget.for_role("ceo")]
        assert call["group_chats"] == {"bale": ["-100"]}

    @pytest.mark.asyncio
    async def test_receipt_is_final_on_creation(self, documents, users_by_name, recorder):
        doc = await documents.create_document(
            "receipt",
            {"items": [{"item_name": "Cement", "quantity": 5}]},
            users_by_name["keeper"],
        )
        assert doc["status"] == "approved"
        assert recorder.calls == []

    @pytest.mark.asyncio
    async def test_company_default_used(self, documents, store, create_payment):
        async with store.transaction() as data:
            data["settings"]["default_company"] = "A"
        doc = await create_payment()
        assert doc["company"] == "A"

    @pytest.mark.asyncio
    async def test_preview_does_not_consume_number(self, documents, create_payment):
        assert await documents.preview_next_number("payment") == 1001
        assert await documents.preview_next_number("payment") == 1001
        doc = await create_payment()
        assert doc["number"] == 1001
        assert await documents.preview_next_number("payment") == 1002


class TestTransitions:
    """审批 / 驳回 / 撤销"""

    @pytest.mark.asyncio
    async def test_full_approval(self, documents, create_payment, approve_to_final, recorder):
        doc = await create_payment()
        final = await approve_to_final(doc["id"])

        assert final["status"] == "approved_final"
        assert final["approvals"] == {"financial": "Fin User", "manager": "Mgr User", "ceo": "Ceo User"}
        assert [h["to_status"] for h in final["history"]] == [
            "approved_financial", "approved_management", "approved_final",
        ]

        # 最后一次通知发给申请人
        assert recorder.calls[-1]["targets"] == [NotificationTarget.for_user("sales")]
        assert recorder.calls[-1].get("with_actions") is None

    @pytest.mark.asyncio
    async def test_next_stage_notified(self, documents, create_payment, users_by_name, recorder):
        doc = await create_payment()
        await documents.transition_document("payment", doc["id"], "approve", users_by_name["fin"])

        call = recorder.calls[-1]
        assert call["targets"] == [NotificationTarget.for_role("manager")]
        assert call["with_actions"] is True

    @pytest.mark.asyncio
    async def test_wrong_role_denied_and_unchanged(self, documents, create_payment, users_by_name):
        doc = await create_payment()
        with pytest.raises(PermissionDenied):
            await documents.transition_document("payment", doc["id"], "approve", users_by_name["mgr"])

        stored = await documents.get_document("payment", doc["id"])
        assert stored["status"] == "pending_financial"
        assert stored["approvals"] == {}

    @pytest.mark.asyncio
    async def test_terminal_transition_not_allowed(self, documents, create_payment, approve_to_final, users_by_name):
        doc = await create_payment()
        await approve_to_final(doc["id"])

        with pytest.raises(TransitionNotAllowed):
            await documents.transition_document("payment", doc["id"], "approve", users_by_name["ceo"])
        with pytest.raises(TransitionNotAllowed):
            await documents.transition_document("payment", doc["id"], "reject", users_by_name["admin"])

    @pytest.mark.asyncio
    async def test_reject_with_reason(self, documents, create_payment, users_by_name, recorder):
        doc = await create_payment()
        rejected = await documents.transition_document(
            "payment", doc["id"], "reject", users_by_name["fin"], reason="مدارک ناقص",
        )

        assert rejected["status"] == "rejected"
        assert rejected["rejected_by"] == "Fin User"
        assert rejected["rejection_reason"] == "مدارک ناقص"
        assert recorder.calls[-1]["targets"] == [NotificationTarget.for_user("sales")]

        with pytest.raises(TransitionNotAllowed):
            await documents.transition_document("payment", doc["id"], "reject", users_by_name["fin"])

    @pytest.mark.asyncio
    async def test_transition_by_number(self, documents, create_payment, users_by_name):
        await create_payment()
        doc = await documents.transition_by_number("payment", 1001, "approve", users_by_name["fin"])
        assert doc["status"] == "approved_financial"

        with pytest.raises(DocumentNotFound):
            await documents.transition_by_number("payment", 9999, "approve", users_by_name["fin"])

    @pytest.mark.asyncio
    async def test_unknown_document(self, documents, users_by_name):
        with pytest.raises(DocumentNotFound):
            await documents.transition_document("payment", "nope", "approve", users_by_name["admin"])

    @pytest.mark.asyncio
    async def test_revoke_and_cancel(self, documents, create_payment, approve_to_final, users_by_name):
        doc = await create_payment()
        await approve_to_final(doc["id"])

        revoking = await documents.transition_document("payment", doc["id"], "revoke", users_by_name["sales"])
        assert revoking["status"] == "revocation_pending_financial"

        # 撤销被驳回：回到已终审，不记录为驳回
        restored = await documents.transition_document("payment", doc["id"], "reject", users_by_name["fin"])
        assert restored["status"] == "approved_final"
        assert restored["rejected_by"] is None

    @pytest.mark.asyncio
    async def test_revoke_to_revoked(self, documents, create_payment, approve_to_final, users_by_name, recorder):
        doc = await create_payment()
        await approve_to_final(doc["id"])
        await documents.transition_document("payment", doc["id"], "revoke", users_by_name["sales"])
        for name in ("fin", "mgr", "ceo"):
            doc = await documents.transition_document("payment", doc["id"], "approve", users_by_name[name])

        assert doc["status"] == "revoked"
        assert doc["approvals"]["revocation_ceo"] == "Ceo User"
        assert recorder.calls[-1]["targets"] == [NotificationTarget.for_user("sales")]

    @pytest.mark.asyncio
    async def test_exit_permit_final_notifies_groups(self, documents, store, users_by_name):
        async with store.transaction() as data:
            data["settings"]["exit_permit_notification_groups"] = {"telegram": ["-200"]}
        doc = await documents.create_document("exit_permit", {"recipient_name": "Reza"}, users_by_name["sales"])

        for name in ("ceo", "factory", "keeper", "sechead"):
            doc = await documents.transition_document("exit_permit", doc["id"], "approve", users_by_name[name])

        assert doc["status"] == "exited"
        assert documents.dispatcher.calls[-1]["group_chats"] == {"telegram": ["-200"]}


class TestUpdateDelete:
    """修改 / 删除"""

    @pytest.mark.asyncio
    async def test_owner_updates_pending_document(self, documents, create_payment, users_by_name, payment_payload):
        doc = await create_payment()
        updated = await documents.update_document(
            "payment", doc["id"], payment_payload(amount=99), users_by_name["sales"],
        )
        assert updated["payload"]["amount"] == 99
        assert updated["number"] == doc["number"]
        assert updated["status"] == "pending_financial"

    @pytest.mark.asyncio
    async def test_non_owner_cannot_update(self, documents, create_payment, users_by_name, payment_payload):
        doc = await create_payment()
        with pytest.raises(PermissionDenied):
            await documents.update_document("payment", doc["id"], payment_payload(), users_by_name["fin"])

    @pytest.mark.asyncio
    async def test_update_after_approval_not_allowed(self, documents, create_payment, users_by_name, payment_payload):
        doc = await create_payment()
        await documents.transition_document("payment", doc["id"], "approve", users_by_name["fin"])

        with pytest.raises(TransitionNotAllowed):
            await documents.update_document("payment", doc["id"], payment_payload(), users_by_name["sales"])

        # 管理员不受限制
        updated = await documents.update_document(
            "payment", doc["id"], payment_payload(amount=5), users_by_name["admin"],
        )
        assert updated["payload"]["amount"] == 5

    @pytest.mark.asyncio
    async def test_delete(self, documents, create_payment, users_by_name):
        doc = await create_payment()
        with pytest.raises(PermissionDenied):
            await documents.delete_document("payment", doc["id"], users_by_name["mgr"])

        await documents.delete_document("payment", doc["id"], users_by_name["sales"])
        assert await documents.list_documents("payment") == []


class TestReports:
    """待办 / 归档 / 汇总"""

    @pytest.mark.asyncio
    async def test_cartable_by_stage(self, documents, create_payment, users_by_name):
        doc = await create_payment()

        fin_cartable = await documents.cartable(users_by_name["fin"])
        assert [d["id"] for d in fin_cartable] == [doc["id"]]
        assert await documents.cartable(users_by_name["mgr"]) == []

        await documents.transition_document("payment", doc["id"], "approve", users_by_name["fin"])
        assert await documents.cartable(users_by_name["fin"]) == []
        assert len(await documents.cartable(users_by_name["mgr"], "payment")) == 1
        assert await documents.cartable(users_by_name["mgr"], "exit_permit") == []

    @pytest.mark.asyncio
    async def test_archive_only_terminal(self, documents, create_payment, users_by_name):
        first = await create_payment()
        await create_payment()
        await documents.transition_document("payment", first["id"], "reject", users_by_name["fin"])

        by_number = await documents.search_archive("1001")
        assert [d["number"] for d in by_number] == [1001]
        # 1002 仍在审批中，不进入归档
        assert await documents.search_archive("1002") == []

        by_date = await documents.search_archive(first["date"][:7], "payment", by="date")
        assert [d["number"] for d in by_date] == [1001]

    @pytest.mark.asyncio
    async def test_archive_by_year(self, documents, create_payment, users_by_name):
        """纯数字的年份按日期匹配，不当作编号"""
        doc = await create_payment()
        await documents.transition_document("payment", doc["id"], "reject", users_by_name["fin"])
        year = doc["date"][:4]

        by_date = await documents.search_archive(year, by="date")
        assert [d["number"] for d in by_date] == [1001]
        assert await documents.search_archive(year, by="number") == []

    @pytest.mark.asyncio
    async def test_archive_number_must_be_digits(self, documents):
        with pytest.raises(ValidationFailed):
            await documents.search_archive("2026-05", by="number")

    @pytest.mark.asyncio
    async def test_archive_empty_query(self, documents):
        with pytest.raises(ValidationFailed):
            await documents.search_archive("   ")

    @pytest.mark.asyncio
    async def test_status_summary(self, documents, create_payment, users_by_name):
        first = await create_payment()
        await create_payment()
        await documents.transition_document("payment", first["id"], "reject", users_by_name["fin"])

        summary = await documents.status_summary()
        assert summary["payment"] == {"rejected": 1, "pending_financial": 1}
        assert summary["exit_permit"] == {}

    @pytest.mark.asyncio
    async def test_list_filters(self, documents, create_payment, users_by_name):
        first = await create_payment()
        await create_payment()
        await documents.transition_document("payment", first["id"], "approve", users_by_name["fin"])

        assert [d["number"] for d in await documents.list_documents("payment")] == [1002, 1001]
        pending = await documents.list_documents("payment", status="pending_financial")
        assert [d["number"] for d in pending] == [1002]
        assert await documents.list_documents("payment", company="Other") == []


class TestNumberLookup:
    """出库单按公司编号，不同公司可能有相同编号"""

    @pytest.fixture
    def create_bijaks(self, documents, users_by_name):
        """为公司 A 和 B 各创建一张出库单"""
        async def _create():
            payload = {"items": [{"item_name": "Cement", "quantity": 3}], "recipient_name": "Reza"}
            keeper = users_by_name["keeper"]
            bijak_a = await documents.create_document("bijak", payload, keeper, company="A")
            bijak_b = await documents.create_document("bijak", payload, keeper, company="B")
            return bijak_a, bijak_b
        return _create

    @pytest.mark.asyncio
    async def test_same_number_in_two_companies(self, create_bijaks):
        bijak_a, bijak_b = await create_bijaks()
        assert bijak_a["number"] == bijak_b["number"] == 1001

    @pytest.mark.asyncio
    async def test_transition_without_company_is_refused(self, documents, users_by_name, create_bijaks):
        await create_bijaks()
        with pytest.raises(AmbiguousNumber) as exc_info:
            await documents.transition_by_number("bijak", 1001, "approve", users_by_name["ceo"])
        assert exc_info.value.context["companies"] == ["A", "B"]

        # 两张单据都没有被修改
        statuses = [d["status"] for d in await documents.list_documents("bijak")]
        assert statuses == ["pending", "pending"]

    @pytest.mark.asyncio
    async def test_transition_with_company(self, documents, users_by_name, create_bijaks):
        bijak_a, bijak_b = await create_bijaks()

        doc = await documents.transition_by_number("bijak", 1001, "approve", users_by_name["ceo"], company="B")

        assert doc["id"] == bijak_b["id"]
        assert (await documents.get_document("bijak", bijak_b["id"]))["status"] == "approved"
        assert (await documents.get_document("bijak", bijak_a["id"]))["status"] == "pending"

    @pytest.mark.asyncio
    async def test_find_by_number(self, documents, create_bijaks):
        bijak_a, _ = await create_bijaks()

        with pytest.raises(AmbiguousNumber):
            await documents.find_by_number("bijak", 1001)
        assert (await documents.find_by_number("bijak", 1001, company="A"))["id"] == bijak_a["id"]
        with pytest.raises(DocumentNotFound):
            await documents.find_by_number("bijak", 1001, company="C")

    @pytest.mark.asyncio
    async def test_unique_number_needs_no_company(self, documents, create_payment, users_by_name):
        doc = await create_payment()
        moved = await documents.transition_by_number("payment", 1001, "approve", users_by_name["fin"])
        assert moved["id"] == doc["id"]
        assert moved["status"] == "approved_financial"
