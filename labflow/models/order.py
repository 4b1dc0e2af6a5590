"""
Lab order models for the LabFlow laboratory workflow system
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Date, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from ..core.database import Base, value_enum
from ..workflow.states import OrderStatus, OrderPriority


class Order(Base):
    """One lab order: a patient visit with one or more ordered tests"""

    __tablename__ = "orders"

    # Opaque identifier
    id = Column(String(32), primary_key=True)

    # Patient reference
    patient_id = Column(String(50), ForeignKey("patients.patient_id"), nullable=False, index=True)

    # Status and priority
    status = Column(value_enum(OrderStatus), default=OrderStatus.ORDER_CREATED, nullable=False, index=True)
    priority = Column(value_enum(OrderPriority), default=OrderPriority.NORMAL, nullable=False)

    # Sample identity; sample_id is unique so the daily-sequence race is detected on insert
    order_date = Column(Date, nullable=False, index=True)
    daily_sequence = Column(Integer, nullable=False)
    sample_id = Column(String(20), unique=True, index=True, nullable=False)
    color_code = Column(String(7), nullable=False)
    color_name = Column(String(20), nullable=False)
    qr_code_data = Column(Text)

    total_amount = Column(Float, default=0.0, nullable=False)

    # Collection and delivery
    collected_at = Column(DateTime)
    collected_by = Column(String(100))
    delivered_at = Column(DateTime)
    delivered_by = Column(String(100))

    # Status change audit
    status_updated_at = Column(DateTime)
    status_updated_by = Column(String(100))

    # Audit fields
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    patient = relationship("Patient", back_populates="orders")
    test_lines = relationship(
        "OrderTest", back_populates="order", order_by="OrderTest.position", cascade="all, delete-orphan"
    )
    results = relationship("Result", back_populates="order")

    def __repr__(self):
        return f"<Order(id='{self.id}', sample_id='{self.sample_id}', status='{self.status.value}')>"

    @property
    def is_urgent(self) -> bool:
        """Check if order is urgent"""
        return self.priority in (OrderPriority.URGENT, OrderPriority.STAT)

    @property
    def test_names(self) -> list:
        return [line.test_name for line in self.test_lines]

    def to_dict(self) -> dict:
        """Convert order to dictionary"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "status": self.status.value if self.status else None,
            "priority": self.priority.value if self.priority else None,
            "order_date": self.order_date,
            "daily_sequence": self.daily_sequence,
            "sample_id": self.sample_id,
            "color_code": self.color_code,
            "color_name": self.color_name,
            "qr_code_data": self.qr_code_data,
            "total_amount": self.total_amount,
            "is_urgent": self.is_urgent,
            "collected_at": self.collected_at,
            "collected_by": self.collected_by,
            "delivered_at": self.delivered_at,
            "delivered_by": self.delivered_by,
            "status_updated_at": self.status_updated_at,
            "status_updated_by": self.status_updated_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class OrderTest(Base):
    """A test ordered as part of an order, kept in the order it was requested"""

    __tablename__ = "order_tests"
    __table_args__ = (UniqueConstraint("order_id", "test_name", name="uq_order_test"),)

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    test_name = Column(String(200), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="test_lines")

    def __repr__(self):
        return f"<OrderTest(order_id='{self.order_id}', test_name='{self.test_name}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "test_name": self.test_name,
            "position": self.position,
        }
