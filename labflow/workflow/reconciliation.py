"""
Status Reconciliation Engine

Re-derives an order's status from the aggregate state of its results after
every result mutation. It is a one-step lookahead: only the transition
adjacent to the current status is considered, orders only ever advance, and
anything that would need a regression is left to a manual transition.

    In Progress      + every ordered test submitted -> Pending Approval
    Pending Approval + every ordered test approved  -> Completed
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from .order_state import OrderSnapshot
from .result_state import ResultSnapshot
from .states import OrderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationOutcome:
    """What a reconciliation pass decided for one order"""
    order_id: str
    previous_status: OrderStatus
    new_status: OrderStatus
    total: int
    submitted: int
    approved: int

    @property
    def changed(self) -> bool:
        return self.new_status != self.previous_status

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "changed": self.changed,
            "total": self.total,
            "submitted": self.submitted,
            "approved": self.approved,
        }


def current_results(results: Iterable[ResultSnapshot]) -> Dict[str, ResultSnapshot]:
    """
    One result per test name, matched case-insensitively.

    When a store holds more than one row for the same test the most recently
    entered one wins, so stale duplicates cannot inflate completion counts.
    """
    latest: Dict[str, ResultSnapshot] = {}
    for result in results:
        key = result.test_name.strip().lower()
        held = latest.get(key)
        if held is None or _entered_sort_key(result) >= _entered_sort_key(held):
            latest[key] = result
    return latest


def _entered_sort_key(result: ResultSnapshot):
    # Results with no entry timestamp sort first
    return (result.entered_at is not None, result.entered_at or 0)


def _next_status(status: OrderStatus, total: int, submitted: int, approved: int) -> Optional[OrderStatus]:
    if total <= 0:
        return None
    if status == OrderStatus.IN_PROGRESS and submitted >= total:
        return OrderStatus.PENDING_APPROVAL
    if status == OrderStatus.PENDING_APPROVAL and approved >= total:
        return OrderStatus.COMPLETED
    return None


def reconcile(order: OrderSnapshot, results: Iterable[ResultSnapshot]) -> ReconciliationOutcome:
    """
    Decide whether order should auto-advance given its current results.

    Only results for tests that are actually on the order count towards the
    totals. The order itself is not modified; callers apply new_status.
    """
    ordered = {name.lower() for name in order.tests}
    relevant = [r for key, r in current_results(results).items() if key in ordered]

    total = order.test_count
    submitted = sum(1 for r in relevant if r.has_values)
    approved = sum(1 for r in relevant if r.is_approved)

    target = _next_status(order.status, total, submitted, approved)
    new_status = target or order.status

    if target:
        logger.info(
            f"Order {order.id} reconciles '{order.status.value}' -> '{target.value}' "
            f"({submitted} submitted, {approved} approved of {total})"
        )
    else:
        logger.debug(
            f"Order {order.id} stays '{order.status.value}' "
            f"({submitted} submitted, {approved} approved of {total})"
        )

    return ReconciliationOutcome(
        order_id=order.id,
        previous_status=order.status,
        new_status=new_status,
        total=total,
        submitted=submitted,
        approved=approved,
    )
