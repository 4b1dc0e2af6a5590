"""
Pydantic schemas for the LabFlow REST API
Defines request and response models for the workflow endpoints
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import datetime, date

from ..workflow.states import OrderPriority


# Base schemas with common fields
class BaseSchema(BaseModel):
    """Base schema with common configuration"""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# Patient schemas
class PatientCreate(BaseSchema):
    """Schema for registering a patient"""
    name: str = Field(..., min_length=1, max_length=200, description="Patient full name")
    sex: Optional[str] = Field(None, max_length=10, description="M, F, O or U")
    patient_id: Optional[str] = Field(None, max_length=50, description="Patient identifier, generated when omitted")
    date_of_birth: Optional[date] = Field(None, description="Patient date of birth")
    phone: Optional[str] = Field(None, max_length=20, description="Patient phone number")
    email: Optional[str] = Field(None, max_length=100, description="Patient email address")
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v and "@" not in v:
            raise ValueError("Invalid email address")
        return v


class PatientResponse(BaseSchema):
    """Schema for patient API response"""
    id: int
    patient_id: str
    name: str
    sex: Optional[str] = None
    date_of_birth: Optional[date] = None
    age: Optional[int] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime


# Order schemas
class OrderCreate(BaseSchema):
    """Schema for creating a lab order"""
    patient_id: str = Field(..., description="Patient identifier")
    tests: List[str] = Field(..., min_length=1, description="Ordered test names, in order")
    priority: OrderPriority = Field(OrderPriority.NORMAL, description="Order priority")
    total_amount: Optional[float] = Field(None, ge=0, description="Billed amount; catalog prices when omitted")
    order_date: Optional[date] = Field(None, description="Order day; today when omitted")


class OrderResponse(BaseSchema):
    """Schema for order API response"""
    id: str
    patient_id: str
    status: str
    priority: str
    order_date: date
    daily_sequence: int
    sample_id: str
    color_code: str
    color_name: str
    qr_code_data: Optional[str] = None
    total_amount: float
    is_urgent: bool = False
    tests: List[str] = []
    available_transitions: List[str] = []
    collected_at: Optional[datetime] = None
    collected_by: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[str] = None
    status_updated_at: Optional[datetime] = None
    status_updated_by: Optional[str] = None
    created_at: datetime


class TransitionRequest(BaseSchema):
    """Manual order status change; unknown statuses are rejected by the workflow"""
    status: str = Field(..., description="Target order status")
    actor: Optional[str] = Field(None, max_length=100, description="Who requests the change")


class ReconciliationResponse(BaseSchema):
    order_id: str
    previous_status: str
    new_status: str
    changed: bool
    total: int
    submitted: int
    approved: int


# Result schemas
class ResultValueInput(BaseSchema):
    """One measured parameter; flags are always computed server side"""
    parameter: str = Field(..., min_length=1, max_length=200)
    value: str = Field(..., max_length=100, description="Raw value as read, e.g. 7.5 or <5")
    unit: str = Field("", max_length=50)
    reference_range: str = Field("", max_length=200, description="Reference range text, e.g. 10-40")


class ResultSubmit(BaseSchema):
    """Schema for entering or replacing a test's values"""
    test_name: str = Field(..., min_length=1, max_length=200)
    values: List[ResultValueInput] = Field(..., min_length=1)
    actor: Optional[str] = Field(None, max_length=100)


class ResultValueResponse(BaseSchema):
    parameter: str
    value: str
    unit: Optional[str] = ""
    reference_range: Optional[str] = ""
    flag: str = ""
    flag_description: str = "Normal"


class ResultResponse(BaseSchema):
    """Schema for result API response"""
    id: str
    order_id: str
    patient_id: Optional[str] = None
    test_name: str
    status: str
    entered_by: Optional[str] = None
    entered_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reported_at: Optional[datetime] = None
    is_abnormal: bool = False
    values: List[ResultValueResponse] = []
    available_transitions: List[str] = []


class ReviewRequest(BaseSchema):
    actor: Optional[str] = Field(None, max_length=100, description="Reviewer")


class ReportRequest(BaseSchema):
    doctor: Optional[str] = Field(None, max_length=200, description="Signing doctor")


# Flag schemas
class ClassifyRequest(BaseSchema):
    """Ad hoc flag lookup for a value against a reference range"""
    value: Optional[str] = None
    reference_range: Optional[str] = None
    sex: Optional[str] = Field(None, max_length=10)
    low_critical: Optional[str] = None
    high_critical: Optional[str] = None


class ClassifyResponse(BaseSchema):
    flag: str
    description: str


# Catalog schemas
class AnalyteResponse(BaseSchema):
    name: str
    unit: Optional[str] = None
    reference_range: Optional[str] = None
    low_critical: Optional[str] = None
    high_critical: Optional[str] = None
    category: Optional[str] = None
