# tests/test_workflow_engine.py
# 审批状态机测试
#
# 运行方式：
#   cd backend
#   pytest tests/test_workflow_engine.py -v

import pytest

from app.core.exceptions import PermissionDenied
from app.workflow.chains import CHAINS, get_chain
from app.workflow.engine import apply_transition, authorize, required_capability, transition


class TestApproveChains:
    """沿审批链前进"""

    def test_payment_full_chain(self):
        steps = [
            ("pending_financial", "approved_financial", ("manager",), "financial"),
            ("approved_financial", "approved_management", ("ceo",), "manager"),
            ("approved_management", "approved_final", (), "ceo"),
        ]
        for current, expected, roles, field in steps:
            result = transition("payment", current, "x", "approve")
            assert result.changed
            assert result.next_status == expected
            assert result.next_roles == roles
            assert result.approval_field == field

    def test_exit_permit_full_chain(self):
        status = "pending_ceo"
        visited = [status]
        while True:
            result = transition("exit_permit", status, "x", "approve")
            if not result.changed:
                break
            status = result.next_status
            visited.append(status)
        assert visited == ["pending_ceo", "pending_factory", "pending_warehouse", "pending_security", "exited"]

    def test_security_stage_notifies_head_and_guard(self):
        result = transition("exit_permit", "pending_warehouse", "warehouse_keeper", "approve")
        assert result.next_status == "pending_security"
        assert result.next_roles == ("security_head", "security_guard")

    def test_bijak_single_stage(self):
        result = transition("bijak", "pending", "ceo", "approve")
        assert result.next_status == "approved"
        assert result.is_terminal

    @pytest.mark.parametrize("doc_type,status", [
        ("payment", "approved_final"),
        ("payment", "rejected"),
        ("payment", "revoked"),
        ("exit_permit", "exited"),
        ("bijak", "approved"),
        ("receipt", "approved"),
    ])
    def test_approve_on_terminal_is_noop(self, doc_type, status):
        result = transition(doc_type, status, "admin", "approve")
        assert not result.changed
        assert result.next_status == status


class TestReject:
    """驳回"""

    @pytest.mark.parametrize("doc_type", ["payment", "exit_permit", "bijak"])
    def test_reject_from_every_pending_stage(self, doc_type):
        chain = get_chain(doc_type)
        for stage in chain.stages:
            result = transition(doc_type, stage.status, stage.role, "reject")
            assert result.changed
            assert result.next_status == "rejected"
            assert result.next_roles == ()

    @pytest.mark.parametrize("doc_type", list(CHAINS))
    def test_reject_on_terminal_is_noop(self, doc_type):
        for status in get_chain(doc_type).terminal_statuses:
            result = transition(doc_type, status, "admin", "reject")
            assert not result.changed
            assert result.next_status == status

    def test_reject_during_revocation_restores_final(self):
        for status in ("revocation_pending_financial", "revocation_pending_manager", "revocation_pending_ceo"):
            result = transition("payment", status, "x", "reject")
            assert result.changed
            assert result.next_status == "approved_final"


class TestRevoke:
    """付款单撤销"""

    def test_revoke_final_payment(self):
        result = transition("payment", "approved_final", "sales_manager", "revoke")
        assert result.changed
        assert result.next_status == "revocation_pending_financial"
        assert result.next_roles == ("financial",)

    def test_revocation_chain_ends_revoked(self):
        status = "revocation_pending_financial"
        for _ in range(3):
            status = transition("payment", status, "x", "approve").next_status
        assert status == "revoked"

    def test_revoke_only_from_final(self):
        assert not transition("payment", "pending_financial", "x", "revoke").changed

    def test_exit_permit_not_revocable(self):
        assert not transition("exit_permit", "exited", "x", "revoke").changed


class TestAuthorize:
    """权限检查"""

    def test_wrong_stage_role_denied(self):
        with pytest.raises(PermissionDenied) as exc_info:
            authorize({"role": "financial"}, "payment", "approved_financial", "approve")
        assert exc_info.value.context["capability"] == "can_approve_manager"

    def test_stage_role_allowed(self):
        authorize({"role": "manager"}, "payment", "approved_financial", "approve")
        authorize({"role": "manager"}, "payment", "approved_financial", "reject")

    def test_admin_allowed_everywhere(self):
        for status in ("pending_financial", "approved_financial", "approved_management"):
            authorize({"role": "admin"}, "payment", status, "approve")

    def test_terminal_status_needs_no_capability(self):
        assert required_capability("payment", "approved_final", "approve") is None
        authorize({"role": "security_guard"}, "payment", "approved_final", "approve")

    def test_revoke_requires_create_capability(self):
        authorize({"role": "financial"}, "payment", "approved_final", "revoke")
        with pytest.raises(PermissionDenied):
            authorize({"role": "ceo"}, "payment", "approved_final", "revoke")

    def test_stored_override_removes_capability(self):
        overrides = {"manager": {"can_approve_manager": False}}
        with pytest.raises(PermissionDenied):
            authorize({"role": "manager"}, "payment", "approved_financial", "approve", overrides)

    def test_critical_capability_cannot_be_removed(self):
        overrides = {"ceo": {"can_approve_ceo": False, "can_approve_exit_ceo": False}}
        authorize({"role": "ceo"}, "payment", "approved_management", "approve", overrides)
        authorize({"role": "ceo"}, "exit_permit", "pending_ceo", "approve", overrides)


class TestApplyTransition:
    """把流转结果写入单据"""

    @pytest.fixture
    def make_document(self):
        def _make(status: str = "pending_financial", **fields) -> dict:
            doc = {"id": "d1", "doc_type": "payment", "number": 1001, "status": status, "approvals": {}}
            doc.update(fields)
            return doc
        return _make

    def test_approval_recorded(self, make_document):
        doc = make_document()
        result = transition("payment", "pending_financial", "financial", "approve")
        apply_transition(doc, result, "Fin User")

        assert doc["status"] == "approved_financial"
        assert doc["approvals"] == {"financial": "Fin User"}
        assert doc["history"][-1]["from_status"] == "pending_financial"
        assert doc["history"][-1]["to_status"] == "approved_financial"
        assert doc["history"][-1]["actor"] == "Fin User"

    def test_approval_field_written_once(self, make_document):
        doc = make_document(approvals={"financial": "First"})
        result = transition("payment", "pending_financial", "financial", "approve")
        apply_transition(doc, result, "Second")
        assert doc["approvals"]["financial"] == "First"

    def test_reject_records_reason(self, make_document):
        doc = make_document()
        result = transition("payment", "pending_financial", "financial", "reject")
        apply_transition(doc, result, "Fin User", reason="مدارک ناقص")

        assert doc["status"] == "rejected"
        assert doc["rejected_by"] == "Fin User"
        assert doc["rejection_reason"] == "مدارک ناقص"

    def test_revocation_reject_not_recorded_as_rejection(self, make_document):
        doc = make_document(status="revocation_pending_manager")
        result = transition("payment", doc["status"], "manager", "reject")
        apply_transition(doc, result, "Mgr User")

        assert doc["status"] == "approved_final"
        assert "rejected_by" not in doc

    def test_unchanged_result_leaves_document(self, make_document):
        doc = make_document(status="rejected")
        result = transition("payment", "rejected", "financial", "reject")
        apply_transition(doc, result, "Fin User")
        assert doc["status"] == "rejected"
        assert "history" not in doc
