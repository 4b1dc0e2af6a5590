"""
Test catalog models for the LabFlow laboratory workflow system
"""

from sqlalchemy import Column, Integer, String, Float, JSON

from ..core.database import Base


class Analyte(Base):
    """A measurable parameter with its default unit and reference range"""

    __tablename__ = "analytes"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), unique=True, index=True, nullable=False)
    unit = Column(String(50), default="")
    reference_range = Column(String(200), default="")

    # Panic values; text so they read the same way reference ranges do
    low_critical = Column(String(20))
    high_critical = Column(String(20))

    category = Column(String(100))

    def __repr__(self):
        return f"<Analyte(name='{self.name}', reference_range='{self.reference_range}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "reference_range": self.reference_range,
            "low_critical": self.low_critical,
            "high_critical": self.high_critical,
            "category": self.category,
        }


class TestGroup(Base):
    """An orderable test made up of one or more analytes"""

    __test__ = False

    __tablename__ = "test_groups"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(200), unique=True, nullable=False)
    analytes = Column(JSON, default=list)
    price = Column(Float, default=0.0)
    sample_type = Column(String(50))  # Blood, Urine, Serum, etc.

    def __repr__(self):
        return f"<TestGroup(code='{self.code}', name='{self.name}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "analytes": list(self.analytes or []),
            "price": self.price,
            "sample_type": self.sample_type,
        }
