"""
Order State Controller

Validates manual order status changes. The order graph is forward-biased:

    Order Created -> Sample Collection -> In Progress -> Pending Approval
                  -> Completed -> Delivered

Only the dangerous jumps are gated (processing an uncollected sample,
skipping approval, delivering an incomplete order). Every target status has
an entry in TRANSITION_GUARDS; the guard returns the operator-facing reason
when the move is not allowed.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..core.config import settings
from ..core.exceptions import InvalidTransition, PreconditionNotMet, ValidationException
from .states import COLLECTION_REQUIRED_STATUSES, OrderPriority, OrderStatus

logger = logging.getLogger(__name__)


MSG_COLLECT_BEFORE_PROCESSING = (
    "Sample must be collected before starting laboratory processing. "
    "Please mark sample as collected first."
)
MSG_COLLECT_BEFORE_APPROVAL = "Sample must be collected before submitting for approval."
MSG_IN_PROGRESS_BEFORE_APPROVAL = "Order must be in progress before submitting for approval."
MSG_COLLECT_BEFORE_COMPLETION = "Sample must be collected before completing order."
MSG_COMPLETE_BEFORE_DELIVERY = "Order must be completed before delivery."


def normalize_test_names(tests: Sequence[str]) -> Tuple[str, ...]:
    """Strip test names and reject blanks or duplicates, keeping the ordered sequence"""
    names = tuple(str(t).strip() for t in tests)
    if any(not name for name in names):
        raise ValidationException("Test names must not be blank")
    seen = set()
    for name in names:
        key = name.lower()
        if key in seen:
            raise ValidationException(f"Test '{name}' is ordered more than once")
        seen.add(key)
    return names


@dataclass(frozen=True)
class OrderSnapshot:
    """Immutable view of an order as the workflow sees it"""
    id: str
    status: OrderStatus = OrderStatus.ORDER_CREATED
    tests: Tuple[str, ...] = ()
    patient_id: Optional[str] = None
    priority: OrderPriority = OrderPriority.NORMAL
    order_date: Optional[date] = None
    sample_id: Optional[str] = None
    color_code: Optional[str] = None
    color_name: Optional[str] = None
    total_amount: float = 0.0
    collected_at: Optional[datetime] = None
    collected_by: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    status_updated_by: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "status", OrderStatus(self.status))
        object.__setattr__(self, "priority", OrderPriority(self.priority))
        object.__setattr__(self, "tests", normalize_test_names(self.tests))

    @property
    def is_collected(self) -> bool:
        return self.collected_at is not None

    @property
    def test_count(self) -> int:
        return len(self.tests)

    @property
    def is_urgent(self) -> bool:
        return self.priority in (OrderPriority.URGENT, OrderPriority.STAT)

    def satisfies_collection_invariant(self) -> bool:
        """Statuses past collection must carry a collection timestamp"""
        return self.status not in COLLECTION_REQUIRED_STATUSES or self.is_collected


Guard = Callable[[OrderSnapshot], Optional[str]]


def _always(order: OrderSnapshot) -> Optional[str]:
    return None


def _require_collection(reason: str) -> Guard:
    def guard(order: OrderSnapshot) -> Optional[str]:
        return None if order.is_collected else reason
    return guard


def _pending_approval_guard(order: OrderSnapshot) -> Optional[str]:
    if not order.is_collected:
        return MSG_COLLECT_BEFORE_APPROVAL
    if order.status != OrderStatus.IN_PROGRESS:
        return MSG_IN_PROGRESS_BEFORE_APPROVAL
    return None


def _delivery_guard(order: OrderSnapshot) -> Optional[str]:
    if order.status != OrderStatus.COMPLETED:
        return MSG_COMPLETE_BEFORE_DELIVERY
    return None


TRANSITION_GUARDS: Dict[OrderStatus, Guard] = {
    # Manual reset to intake; enabled or disabled by configuration
    OrderStatus.ORDER_CREATED: _always,
    OrderStatus.SAMPLE_COLLECTION: _always,
    OrderStatus.IN_PROGRESS: _require_collection(MSG_COLLECT_BEFORE_PROCESSING),
    OrderStatus.PENDING_APPROVAL: _pending_approval_guard,
    OrderStatus.COMPLETED: _require_collection(MSG_COLLECT_BEFORE_COMPLETION),
    OrderStatus.DELIVERED: _delivery_guard,
}


def parse_order_status(value) -> OrderStatus:
    """Coerce a status value or raise InvalidTransition for unknown strings"""
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidTransition(None, value, f"Unknown order status '{value}'")


class OrderStateController:
    """Validates and applies manual order status changes"""

    def __init__(self, allow_manual_reset: Optional[bool] = None, clock: Callable[[], datetime] = None):
        if allow_manual_reset is None:
            allow_manual_reset = settings.workflow_allow_manual_reset
        self.allow_manual_reset = allow_manual_reset
        self.clock = clock or datetime.utcnow

    def check_transition(self, order: OrderSnapshot, target) -> OrderStatus:
        """Raise if order cannot move to target; returns the parsed target"""
        target = parse_order_status(target)

        if target == order.status:
            return target

        if target == OrderStatus.ORDER_CREATED and not self.allow_manual_reset:
            raise InvalidTransition(
                order.status.value, target.value,
                f"Order cannot be moved back to '{target.value}' from '{order.status.value}'"
            )

        reason = TRANSITION_GUARDS[target](order)
        if reason:
            raise PreconditionNotMet(reason)
        return target

    def can_transition(self, order: OrderSnapshot, target) -> Tuple[bool, Optional[str]]:
        """(allowed, reason) pair for rendering status buttons"""
        try:
            self.check_transition(order, target)
        except (InvalidTransition, PreconditionNotMet) as e:
            return False, e.message
        return True, None

    def available_transitions(self, order: OrderSnapshot) -> List[OrderStatus]:
        """All statuses the order could be moved to right now"""
        return [
            status for status in OrderStatus
            if status != order.status and self.can_transition(order, status)[0]
        ]

    def request_transition(self, order: OrderSnapshot, target, actor: str,
                           now: Optional[datetime] = None) -> OrderSnapshot:
        """
        Move an order to target on behalf of actor.

        Requesting the current status returns the order unchanged. Raises
        PreconditionNotMet with the operator-facing reason when a guard fails
        and InvalidTransition for unknown or disabled targets.
        """
        try:
            target = self.check_transition(order, target)
        except (InvalidTransition, PreconditionNotMet) as e:
            logger.warning(f"Rejected order {order.id} transition {order.status.value} -> {target}: {e.message}")
            raise

        if target == order.status:
            logger.debug(f"Order {order.id} already in '{target.value}', nothing to do")
            return order

        now = now or self.clock()
        changes = {
            "status": target,
            "status_updated_at": now,
            "status_updated_by": actor,
        }
        if target == OrderStatus.SAMPLE_COLLECTION:
            changes["collected_at"] = now
            changes["collected_by"] = actor
        elif target == OrderStatus.DELIVERED:
            changes["delivered_at"] = now
            changes["delivered_by"] = actor

        logger.info(f"Order {order.id}: '{order.status.value}' -> '{target.value}' by {actor}")
        return replace(order, **changes)
