"""
Patient model for the LabFlow laboratory workflow system
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Date
from sqlalchemy.orm import relationship
from datetime import datetime, date
from typing import Optional

from ..core.database import Base


class Patient(Base):
    """Patient demographics the workflow needs: identity and sex for reference ranges"""

    __tablename__ = "patients"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    # Patient identifiers
    patient_id = Column(String(50), unique=True, index=True, nullable=False)

    # Personal information
    name = Column(String(200), nullable=False)
    sex = Column(String(10))  # M, F, O, U (Male, Female, Other, Unknown)
    date_of_birth = Column(Date)

    # Contact information
    phone = Column(String(20))
    email = Column(String(100))

    notes = Column(Text)

    # Audit fields
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    orders = relationship("Order", back_populates="patient")

    def __repr__(self):
        return f"<Patient(id={self.id}, patient_id='{self.patient_id}', name='{self.name}')>"

    @property
    def age(self) -> Optional[int]:
        """Calculate patient's age"""
        if not self.date_of_birth:
            return None

        today = date.today()
        age = today.year - self.date_of_birth.year

        # Adjust if birthday hasn't occurred this year
        if (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day):
            age -= 1

        return age

    def to_dict(self) -> dict:
        """Convert patient to dictionary"""
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "name": self.name,
            "sex": self.sex,
            "date_of_birth": self.date_of_birth,
            "age": self.age,
            "phone": self.phone,
            "email": self.email,
            "notes": self.notes,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
