"""
Unit tests for the Status Reconciliation Engine
"""

import pytest
from datetime import datetime

from labflow.workflow.reconciliation import current_results, reconcile
from labflow.workflow.result_state import ResultSnapshot, ResultValue
from labflow.workflow.states import OrderStatus, ResultStatus
from tests.conftest import CBC, LFT, LIPID, generate_order_snapshot

COLLECTED_AT = datetime(2025, 1, 5, 8, 0)
VALUES = (ResultValue("Test Parameter", "1"),)


def make_result(test_name, status=ResultStatus.UNDER_REVIEW, values=VALUES, entered_at=None, result_id=None):
    return ResultSnapshot(
        id=result_id or f"R-{test_name}",
        order_id="ORD001",
        test_name=test_name,
        status=status,
        values=values,
        entered_at=entered_at or datetime(2025, 1, 5, 10, 0),
    )


def order_in(status):
    return generate_order_snapshot(status=status, collected_at=COLLECTED_AT)


class TestSubmissionProgress:
    """Test In Progress orders advancing once every test has results"""

    def test_partial_submission_stays_in_progress(self):
        outcome = reconcile(order_in(OrderStatus.IN_PROGRESS), [make_result(LIPID), make_result(LFT)])

        assert outcome.new_status == OrderStatus.IN_PROGRESS
        assert outcome.changed is False
        assert (outcome.total, outcome.submitted, outcome.approved) == (3, 2, 0)

    def test_all_submitted_moves_to_pending_approval(self):
        results = [make_result(LIPID), make_result(LFT), make_result(CBC)]

        outcome = reconcile(order_in(OrderStatus.IN_PROGRESS), results)

        assert outcome.previous_status == OrderStatus.IN_PROGRESS
        assert outcome.new_status == OrderStatus.PENDING_APPROVAL
        assert outcome.changed is True

    def test_result_without_values_is_not_submitted(self):
        results = [make_result(LIPID), make_result(LFT), make_result(CBC, values=())]
        assert reconcile(order_in(OrderStatus.IN_PROGRESS), results).new_status == OrderStatus.IN_PROGRESS

    def test_only_one_step_per_pass(self):
        """Test an in-progress order with approved results stops at Pending Approval"""
        results = [make_result(name, status=ResultStatus.APPROVED) for name in (LIPID, LFT, CBC)]
        assert reconcile(order_in(OrderStatus.IN_PROGRESS), results).new_status == OrderStatus.PENDING_APPROVAL


class TestApprovalProgress:
    """Test Pending Approval orders completing once every test is approved"""

    def test_all_approved_completes(self):
        results = [
            make_result(LIPID, status=ResultStatus.APPROVED),
            make_result(LFT, status=ResultStatus.REPORTED),
            make_result(CBC, status=ResultStatus.APPROVED),
        ]

        outcome = reconcile(order_in(OrderStatus.PENDING_APPROVAL), results)

        assert outcome.new_status == OrderStatus.COMPLETED
        assert outcome.approved == 3

    def test_partial_approval_stays_pending(self):
        results = [
            make_result(LIPID, status=ResultStatus.APPROVED),
            make_result(LFT, status=ResultStatus.APPROVED),
            make_result(CBC),
        ]
        assert reconcile(order_in(OrderStatus.PENDING_APPROVAL), results).new_status == OrderStatus.PENDING_APPROVAL


class TestNoRegression:
    """Test that reconciliation never moves an order backwards"""

    def test_pending_approval_with_missing_results(self):
        outcome = reconcile(order_in(OrderStatus.PENDING_APPROVAL), [make_result(LIPID)])
        assert outcome.new_status == OrderStatus.PENDING_APPROVAL

    def test_completed_with_reverted_result(self):
        results = [
            make_result(LIPID, status=ResultStatus.UNDER_REVIEW),
            make_result(LFT, status=ResultStatus.APPROVED),
            make_result(CBC, status=ResultStatus.APPROVED),
        ]
        assert reconcile(order_in(OrderStatus.COMPLETED), results).changed is False

    @pytest.mark.parametrize("status", [
        OrderStatus.ORDER_CREATED, OrderStatus.SAMPLE_COLLECTION,
        OrderStatus.COMPLETED, OrderStatus.DELIVERED,
    ])
    def test_other_statuses_untouched(self, status):
        results = [make_result(name, status=ResultStatus.APPROVED) for name in (LIPID, LFT, CBC)]
        assert reconcile(order_in(status), results).new_status == status


class TestCounting:
    """Test how results are matched to ordered tests"""

    def test_order_without_tests_never_advances(self):
        order = generate_order_snapshot(status=OrderStatus.IN_PROGRESS, collected_at=COLLECTED_AT, tests=())

        outcome = reconcile(order, [make_result(LIPID)])

        assert outcome.total == 0
        assert outcome.changed is False

    def test_results_for_other_tests_are_ignored(self):
        """Test results for tests not on the order are not counted"""
        results = [make_result(LIPID), make_result(LFT), make_result("Thyroid Profile")]

        outcome = reconcile(order_in(OrderStatus.IN_PROGRESS), results)

        assert outcome.submitted == 2
        assert outcome.new_status == OrderStatus.IN_PROGRESS

    def test_test_names_match_case_insensitively(self):
        results = [make_result(LIPID.upper()), make_result(LFT.lower()), make_result(CBC)]
        assert reconcile(order_in(OrderStatus.IN_PROGRESS), results).new_status == OrderStatus.PENDING_APPROVAL

    def test_duplicate_results_count_once(self):
        """Test duplicate rows for one test cannot inflate the submitted count"""
        results = [
            make_result(LIPID, result_id="R1"),
            make_result(LIPID, result_id="R2"),
            make_result(LFT),
        ]

        outcome = reconcile(order_in(OrderStatus.IN_PROGRESS), results)

        assert outcome.submitted == 2
        assert outcome.new_status == OrderStatus.IN_PROGRESS

    def test_latest_duplicate_wins(self):
        older = make_result(LIPID, status=ResultStatus.APPROVED, entered_at=datetime(2025, 1, 5, 10, 0), result_id="R1")
        newer = make_result(LIPID, status=ResultStatus.UNDER_REVIEW, entered_at=datetime(2025, 1, 5, 11, 0), result_id="R2")

        assert current_results([newer, older])[LIPID.lower()].id == "R2"
        assert current_results([older, newer])[LIPID.lower()].id == "R2"

    def test_outcome_to_dict(self):
        results = [make_result(LIPID), make_result(LFT), make_result(CBC)]

        data = reconcile(order_in(OrderStatus.IN_PROGRESS), results).to_dict()

        assert data == {
            "order_id": "ORD001",
            "previous_status": "In Progress",
            "new_status": "Pending Approval",
            "changed": True,
            "total": 3,
            "submitted": 3,
            "approved": 0,
        }
