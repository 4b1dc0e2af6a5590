# Order/result lifecycle workflow: pure state controllers and classifiers

from .states import OrderStatus, OrderPriority, ResultStatus, ReportStatus
from .flags import (
    Flag, LessThan, GreaterThan, Between, Unparseable,
    classify, classify_with_criticals, has_abnormal_flags, flag_description,
    parse_reference_range, parse_reference_range_strict,
)
from .sample_identity import SampleIdentity, COLOR_PALETTE, assign, next_daily_sequence, build_qr_payload
from .order_state import OrderSnapshot, OrderStateController
from .result_state import ResultValue, ResultSnapshot, ResultStateController
from .reconciliation import ReconciliationOutcome, reconcile

__all__ = [
    # Statuses
    "OrderStatus",
    "OrderPriority",
    "ResultStatus",
    "ReportStatus",

    # Flag Interpretation Engine
    "Flag",
    "LessThan",
    "GreaterThan",
    "Between",
    "Unparseable",
    "classify",
    "classify_with_criticals",
    "has_abnormal_flags",
    "flag_description",
    "parse_reference_range",
    "parse_reference_range_strict",

    # Sample Identity Allocator
    "SampleIdentity",
    "COLOR_PALETTE",
    "assign",
    "next_daily_sequence",
    "build_qr_payload",

    # State controllers
    "OrderSnapshot",
    "OrderStateController",
    "ResultValue",
    "ResultSnapshot",
    "ResultStateController",

    # Reconciliation
    "ReconciliationOutcome",
    "reconcile",
]
