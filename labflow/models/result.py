"""
Test result models for the LabFlow laboratory workflow system
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from ..core.database import Base, value_enum
from ..workflow.flags import Flag, flag_description
from ..workflow.states import ResultStatus


class Result(Base):
    """Current result for one ordered test; there is at most one per (order, test)"""

    __tablename__ = "results"
    __table_args__ = (UniqueConstraint("order_id", "test_name", name="uq_result_order_test"),)

    # Opaque identifier
    id = Column(String(32), primary_key=True)

    # References
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    patient_id = Column(String(50), index=True)
    test_name = Column(String(200), nullable=False)

    status = Column(value_enum(ResultStatus), default=ResultStatus.ENTERED, nullable=False, index=True)

    # Personnel and timing
    entered_by = Column(String(100))
    entered_at = Column(DateTime)
    reviewed_by = Column(String(100))
    reviewed_at = Column(DateTime)
    reported_at = Column(DateTime)

    # Audit fields
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="results")
    values = relationship(
        "ResultValueRecord", back_populates="result",
        order_by="ResultValueRecord.position", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Result(id='{self.id}', test_name='{self.test_name}', status='{self.status.value}')>"

    @property
    def is_abnormal(self) -> bool:
        """Check if any stored value carries an abnormal flag"""
        return any(value.is_abnormal for value in self.values)

    def to_dict(self) -> dict:
        """Convert result to dictionary"""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "patient_id": self.patient_id,
            "test_name": self.test_name,
            "status": self.status.value if self.status else None,
            "entered_by": self.entered_by,
            "entered_at": self.entered_at,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
            "reported_at": self.reported_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class ResultValueRecord(Base):
    """One measured parameter of a result; flag is a cache of the Flag Engine's output"""

    __tablename__ = "result_values"

    id = Column(Integer, primary_key=True, index=True)
    result_id = Column(String(32), ForeignKey("results.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    parameter = Column(String(200), nullable=False)
    value = Column(String(100), nullable=False, default="")
    unit = Column(String(50), default="")
    reference_range = Column(String(200), default="")
    flag = Column(String(2), default="")  # H, L, C or empty

    result = relationship("Result", back_populates="values")

    def __repr__(self):
        return f"<ResultValueRecord(parameter='{self.parameter}', value='{self.value}', flag='{self.flag}')>"

    @property
    def is_abnormal(self) -> bool:
        return bool(self.flag)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "result_id": self.result_id,
            "position": self.position,
            "parameter": self.parameter,
            "value": self.value,
            "unit": self.unit,
            "reference_range": self.reference_range,
            "flag": self.flag or Flag.NONE.value,
            "flag_description": flag_description(self.flag),
        }
