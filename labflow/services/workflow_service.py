"""
Lab Workflow Service - order and result lifecycle orchestration

Binds the pure workflow controllers to the record store and the reporting
collaborator. Every public method is a single read-decide-write sequence:
state is loaded from the store, a controller decides, and the resulting
changes are written back. After each result mutation the order is
reconciled against the committed result state.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from ..core.config import settings
from ..core.exceptions import DatabaseException, PreconditionNotMet, RecordNotFound, ValidationException
from ..workflow.order_state import OrderSnapshot, OrderStateController, normalize_test_names
from ..workflow.reconciliation import ReconciliationOutcome, reconcile
from ..workflow.result_state import ResultSnapshot, ResultStateController, ResultValue
from ..workflow.sample_identity import assign, build_qr_payload, next_daily_sequence
from ..workflow.states import OrderPriority, ReportStatus
from .catalog import TestCatalog
from .record_store import RecordStore, Row
from .reporting import ReportingService, StoreReportingService

logger = logging.getLogger(__name__)

MSG_COLLECT_BEFORE_RESULTS = "Sample must be collected before entering results."

ORDER_WRITE_FIELDS = (
    "status", "collected_at", "collected_by", "delivered_at", "delivered_by",
    "status_updated_at", "status_updated_by",
)
RESULT_WRITE_FIELDS = ("status", "entered_by", "entered_at", "reviewed_by", "reviewed_at", "reported_at")

VALID_SEXES = ("M", "F", "O", "U")


def _changed_fields(before, after, fields: Sequence[str]) -> Dict[str, Any]:
    return {
        field: getattr(after, field)
        for field in fields
        if getattr(before, field) != getattr(after, field)
    }


def order_snapshot(row: Mapping[str, Any], tests: Iterable[str]) -> OrderSnapshot:
    """Build the workflow view of a stored order"""
    return OrderSnapshot(
        id=row["id"],
        status=row["status"],
        tests=tuple(tests),
        patient_id=row.get("patient_id"),
        priority=row.get("priority") or OrderPriority.NORMAL,
        order_date=row.get("order_date"),
        sample_id=row.get("sample_id"),
        color_code=row.get("color_code"),
        color_name=row.get("color_name"),
        total_amount=row.get("total_amount") or 0.0,
        collected_at=row.get("collected_at"),
        collected_by=row.get("collected_by"),
        delivered_at=row.get("delivered_at"),
        delivered_by=row.get("delivered_by"),
        status_updated_at=row.get("status_updated_at"),
        status_updated_by=row.get("status_updated_by"),
    )


def result_snapshot(row: Mapping[str, Any], value_rows: Iterable[Mapping[str, Any]]) -> ResultSnapshot:
    """Build the workflow view of a stored result and its value rows"""
    return ResultSnapshot(
        id=row["id"],
        order_id=row["order_id"],
        test_name=row["test_name"],
        status=row["status"],
        values=tuple(ResultValue.from_mapping(v) for v in value_rows),
        patient_id=row.get("patient_id"),
        entered_by=row.get("entered_by"),
        entered_at=row.get("entered_at"),
        reviewed_by=row.get("reviewed_by"),
        reviewed_at=row.get("reviewed_at"),
        reported_at=row.get("reported_at"),
    )


class LabWorkflowService:
    """Order intake, result entry and review, and automatic order reconciliation"""

    def __init__(
        self,
        store: RecordStore,
        reporting: Optional[ReportingService] = None,
        catalog: Optional[TestCatalog] = None,
        clock: Callable[[], datetime] = None,
        allow_manual_reset: Optional[bool] = None,
    ):
        self.store = store
        self.clock = clock or datetime.utcnow
        self.reporting = reporting or StoreReportingService(store, clock=self.clock)
        self.catalog = catalog
        self.order_controller = OrderStateController(allow_manual_reset=allow_manual_reset, clock=self.clock)
        self.result_controller = ResultStateController(
            flagger=catalog.flag if catalog is not None else None,
            clock=self.clock,
        )

    # Patients

    def register_patient(
        self,
        name: str,
        sex: Optional[str] = None,
        patient_id: Optional[str] = None,
        date_of_birth: Optional[date] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Row:
        name = (name or "").strip()
        if not name:
            raise ValidationException("Patient name is required")

        sex = (sex or "U").strip().upper()[:1] or "U"
        if sex not in VALID_SEXES:
            raise ValidationException(f"Invalid sex '{sex}', expected one of {', '.join(VALID_SEXES)}")

        patient = self.store.insert("patients", {
            "patient_id": patient_id or f"PAT-{uuid4().hex[:8].upper()}",
            "name": name,
            "sex": sex,
            "date_of_birth": date_of_birth,
            "phone": phone,
            "email": email,
            "notes": notes,
        })
        logger.info(f"Patient {patient['patient_id']} registered")
        return patient

    def get_patient(self, patient_id: str) -> Row:
        return self.store.get_one("patients", {"patient_id": patient_id})

    def _patient_sex(self, patient_id: Optional[str]) -> Optional[str]:
        if not patient_id:
            return None
        rows = self.store.get("patients", {"patient_id": patient_id}, limit=1)
        return rows[0]["sex"] if rows else None

    # Orders

    def create_order(
        self,
        patient_id: str,
        tests: Sequence[str],
        priority=OrderPriority.NORMAL,
        total_amount: Optional[float] = None,
        order_date: Optional[date] = None,
    ) -> Row:
        """
        Create an order and stamp it with the next sample identity of the day.

        The daily sequence is the count of the day's orders plus one, read
        before the insert. A concurrent creation that read the same count
        fails on the unique sample ID with ConcurrencyConflict.
        """
        patient = self.get_patient(patient_id)

        tests = normalize_test_names(tests)
        if not tests:
            raise ValidationException("An order needs at least one test")
        try:
            priority = OrderPriority(priority)
        except ValueError:
            raise ValidationException(f"Invalid priority '{priority}'")

        now = self.clock()
        day = order_date or now.date()
        sequence = next_daily_sequence(self.store.count("orders", {"order_date": day}))
        identity = assign(day, sequence)

        if total_amount is None:
            total_amount = self.catalog.price_for(tests) if self.catalog is not None else 0.0

        order_id = uuid4().hex
        with self.store.transaction():
            self.store.insert("orders", {
                "id": order_id,
                "patient_id": patient_id,
                "priority": priority,
                "order_date": day,
                "daily_sequence": identity.daily_sequence,
                "sample_id": identity.sample_id,
                "color_code": identity.color_code,
                "color_name": identity.color_name,
                "qr_code_data": build_qr_payload(
                    order_id, patient_id, identity, day, patient.get("name"), generated_at=now
                ),
                "total_amount": total_amount,
                "created_at": now,
            })
            for position, test_name in enumerate(tests):
                self.store.insert("order_tests", {
                    "order_id": order_id,
                    "test_name": test_name,
                    "position": position,
                })

        logger.info(
            f"Order {order_id} created for patient {patient_id}: sample {identity.sample_id} "
            f"({identity.color_name}), {len(tests)} tests"
        )
        return self.get_order(order_id)

    def _order_tests(self, order_id: str) -> List[str]:
        return [row["test_name"] for row in self.store.get("order_tests", {"order_id": order_id}, order_by=["position"])]

    def _load_order(self, order_id: str):
        row = self.store.get_one("orders", {"id": order_id})
        return row, order_snapshot(row, self._order_tests(order_id))

    def _order_view(self, row: Row, snapshot: OrderSnapshot) -> Row:
        view = dict(row)
        view["tests"] = list(snapshot.tests)
        view["available_transitions"] = [s.value for s in self.order_controller.available_transitions(snapshot)]
        return view

    def get_order(self, order_id: str) -> Row:
        """Order row with its ordered tests and the statuses it can move to"""
        row, snapshot = self._load_order(order_id)
        return self._order_view(row, snapshot)

    def list_orders(self, status=None, patient_id: Optional[str] = None, limit: Optional[int] = None) -> List[Row]:
        filters = {}
        if status is not None:
            filters["status"] = status
        if patient_id is not None:
            filters["patient_id"] = patient_id
        rows = self.store.get("orders", filters, order_by=["-created_at", "-daily_sequence"], limit=limit)
        return [self._order_view(row, order_snapshot(row, self._order_tests(row["id"]))) for row in rows]

    def request_order_transition(self, order_id: str, target, actor: Optional[str] = None) -> Row:
        """
        Manual order status change.

        Raises PreconditionNotMet with the operator-facing reason when the
        target's guard fails, InvalidTransition for unknown or disabled
        targets. Requesting the current status changes nothing.
        """
        actor = actor or settings.workflow_default_actor
        row, before = self._load_order(order_id)
        after = self.order_controller.request_transition(before, target, actor)

        changes = _changed_fields(before, after, ORDER_WRITE_FIELDS)
        if changes:
            row = self.store.update("orders", {"id": order_id}, changes)[0]
        return self._order_view(row, after)

    # Results

    def _value_rows(self, result_id: str) -> List[Row]:
        return self.store.get("result_values", {"result_id": result_id}, order_by=["position"])

    def _load_result(self, result_id: str) -> ResultSnapshot:
        row = self.store.get_one("results", {"id": result_id})
        return result_snapshot(row, self._value_rows(result_id))

    def _result_view(self, row: Row, value_rows: List[Row], sex: Optional[str] = None) -> Row:
        snapshot = result_snapshot(row, value_rows)
        view = dict(row)
        view["values"] = value_rows
        view["is_abnormal"] = snapshot.is_abnormal(sex)
        view["available_transitions"] = sorted(
            s.value for s in self.result_controller.available_transitions(snapshot)
        )
        return view

    def get_result(self, result_id: str) -> Row:
        row = self.store.get_one("results", {"id": result_id})
        return self._result_view(row, self._value_rows(result_id), self._patient_sex(row.get("patient_id")))

    def list_results(self, order_id: str) -> List[Row]:
        self.store.get_one("orders", {"id": order_id})
        rows = self.store.get("results", {"order_id": order_id}, order_by=["created_at"])
        return [
            self._result_view(row, self._value_rows(row["id"]), self._patient_sex(row.get("patient_id")))
            for row in rows
        ]

    def submit_result(self, order_id: str, test_name: str, values, actor: Optional[str] = None) -> Row:
        """
        Enter or replace the measured values for one ordered test.

        The result goes to Under Review with every value flagged for the
        patient's sex. A resubmission replaces the previous value set.
        """
        actor = actor or settings.workflow_default_actor
        _, order = self._load_order(order_id)

        ordered = {name.lower(): name for name in order.tests}
        key = (test_name or "").strip().lower()
        if key not in ordered:
            raise ValidationException(f"Test '{test_name}' is not part of order {order_id}")
        test_name = ordered[key]

        if not order.is_collected:
            logger.warning(f"Rejected result entry for order {order_id}: sample not collected")
            raise PreconditionNotMet(MSG_COLLECT_BEFORE_RESULTS)

        if self.catalog is not None:
            values = [
                self.catalog.complete(v if isinstance(v, ResultValue) else ResultValue.from_mapping(v))
                for v in values
            ]

        sex = self._patient_sex(order.patient_id)
        existing_rows = self.store.get("results", {"order_id": order_id, "test_name": test_name}, limit=1)
        existing = result_snapshot(existing_rows[0], self._value_rows(existing_rows[0]["id"])) if existing_rows else None

        result = self.result_controller.submit(
            order_id, test_name, values, actor, sex=sex, existing=existing, patient_id=order.patient_id
        )

        with self.store.transaction():
            if existing is None:
                self.store.insert("results", {
                    "id": result.id,
                    "order_id": result.order_id,
                    "patient_id": result.patient_id,
                    "test_name": result.test_name,
                    "status": result.status,
                    "entered_by": result.entered_by,
                    "entered_at": result.entered_at,
                })
            else:
                self.store.update("results", {"id": result.id}, _changed_fields(existing, result, RESULT_WRITE_FIELDS))
                self.store.delete("result_values", {"result_id": result.id})

            for position, value in enumerate(result.values):
                record = value.to_dict()
                record.update({"result_id": result.id, "position": position})
                self.store.insert("result_values", record)

        self._after_result_change(order_id)
        return self.get_result(result.id)

    def _apply_result_change(self, before: ResultSnapshot, after: ResultSnapshot):
        changes = _changed_fields(before, after, RESULT_WRITE_FIELDS)
        if changes:
            self.store.update("results", {"id": after.id}, changes)
        return bool(changes)

    def approve_result(self, result_id: str, actor: Optional[str] = None) -> Row:
        actor = actor or settings.workflow_default_actor
        before = self._load_result(result_id)
        after = self.result_controller.approve(before, actor)
        if self._apply_result_change(before, after):
            self._after_result_change(after.order_id)
        return self.get_result(result_id)

    def reject_result(self, result_id: str, actor: Optional[str] = None) -> Row:
        """Send a result back to the technician; the entered values stay"""
        actor = actor or settings.workflow_default_actor
        before = self._load_result(result_id)
        after = self.result_controller.reject(before, actor)
        if self._apply_result_change(before, after):
            self._after_result_change(after.order_id)
        return self.get_result(result_id)

    def mark_result_reported(self, result_id: str, doctor: Optional[str] = None) -> Row:
        """Approved -> Reported, creating the report record in the same commit"""
        before = self._load_result(result_id)
        after = self.result_controller.mark_reported(before)
        if before.status != after.status:
            with self.store.transaction():
                self._apply_result_change(before, after)
                self.reporting.create_report(after.order_id, after.id, doctor)
            self._after_result_change(after.order_id)
        return self.get_result(result_id)

    def revert_result(self, result_id: str) -> Row:
        """
        Reported -> Under Review for a correction. The report record goes
        back to Generated. The order status is never moved backwards here.
        """
        before = self._load_result(result_id)
        after = self.result_controller.revert_to_under_review(before)
        if before.status != after.status:
            with self.store.transaction():
                self._apply_result_change(before, after)
                try:
                    self.reporting.set_report_status(after.id, ReportStatus(settings.report_generated_status))
                except RecordNotFound:
                    logger.warning(f"Result {after.id} reverted without a report record to roll back")
            self._after_result_change(after.order_id)
        return self.get_result(result_id)

    # Reconciliation

    def _after_result_change(self, order_id: str):
        if settings.workflow_auto_reconcile:
            self.reconcile_order(order_id)

    def reconcile_order(self, order_id: str) -> ReconciliationOutcome:
        """
        Re-derive the order status from its committed results and apply the
        outcome in a single write, or not at all.
        """
        try:
            _, order = self._load_order(order_id)
            result_rows = self.store.get("results", {"order_id": order_id})
            results = [result_snapshot(row, self._value_rows(row["id"])) for row in result_rows]
        except DatabaseException as e:
            logger.error(f"Reconciliation of order {order_id} skipped, state unavailable: {str(e)}")
            raise

        outcome = reconcile(order, results)
        if outcome.changed:
            self.store.update("orders", {"id": order_id}, {
                "status": outcome.new_status,
                "status_updated_at": self.clock(),
                "status_updated_by": settings.workflow_system_actor,
            })
        return outcome
