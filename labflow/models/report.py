"""
Report record model for the LabFlow laboratory workflow system
"""

from sqlalchemy import Column, String, DateTime, ForeignKey
from datetime import datetime

from ..core.database import Base, value_enum
from ..workflow.states import ReportStatus


class Report(Base):
    """Report bookkeeping for a reported result; rendering happens elsewhere"""

    __tablename__ = "reports"

    id = Column(String(32), primary_key=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    result_id = Column(String(32), ForeignKey("results.id"), unique=True, nullable=False, index=True)

    doctor = Column(String(200))
    status = Column(value_enum(ReportStatus), default=ReportStatus.GENERATED, nullable=False)

    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Report(id='{self.id}', result_id='{self.result_id}', status='{self.status.value}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "result_id": self.result_id,
            "doctor": self.doctor,
            "status": self.status.value if self.status else None,
            "generated_at": self.generated_at,
            "updated_at": self.updated_at,
        }
