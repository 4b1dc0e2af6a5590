"""
Reporting collaborator

Keeps the report bookkeeping that goes with result reporting: one report
record per reported result. Report rendering (PDF, print layout) is not
done here.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Protocol
from uuid import uuid4

from ..core.config import settings
from ..core.exceptions import RecordNotFound
from ..workflow.states import ReportStatus
from .record_store import RecordStore, Row

logger = logging.getLogger(__name__)


class ReportingService(Protocol):
    """Interface the workflow uses to create and update report records"""

    def create_report(self, order_id: str, result_id: str, doctor: Optional[str] = None) -> Row: ...

    def set_report_status(self, result_id: str, status) -> Row: ...


class StoreReportingService:
    """ReportingService that keeps report records in the record store"""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = None):
        self.store = store
        self.clock = clock or datetime.utcnow

    def create_report(self, order_id: str, result_id: str, doctor: Optional[str] = None) -> Row:
        """
        Create the report record for a result.

        Reporting the same result again (after a revert and re-approval)
        refreshes the existing record instead of adding a second one.
        """
        doctor = doctor or settings.report_default_doctor
        now = self.clock()

        existing = self.store.get("reports", {"result_id": result_id}, limit=1)
        if existing:
            report = self.store.update(
                "reports", {"id": existing[0]["id"]},
                {"doctor": doctor, "status": ReportStatus(settings.report_generated_status), "generated_at": now},
            )[0]
            logger.info(f"Report {report['id']} regenerated for result {result_id}")
            return report

        report = self.store.insert("reports", {
            "id": uuid4().hex,
            "order_id": order_id,
            "result_id": result_id,
            "doctor": doctor,
            "status": ReportStatus(settings.report_generated_status),
            "generated_at": now,
        })
        logger.info(f"Report {report['id']} created for order {order_id} result {result_id} by {doctor}")
        return report

    def set_report_status(self, result_id: str, status) -> Row:
        status = ReportStatus(status)
        updated = self.store.update("reports", {"result_id": result_id}, {"status": status})
        if not updated:
            raise RecordNotFound("reports", result_id)
        logger.info(f"Report for result {result_id} set to '{status.value}'")
        return updated[0]

    def get_report(self, result_id: str) -> Row:
        return self.store.get_one("reports", {"result_id": result_id})
