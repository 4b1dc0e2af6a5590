# Database models

from .patient import Patient
from .order import Order, OrderTest
from .result import Result, ResultValueRecord
from .report import Report
from .catalog import Analyte, TestGroup

__all__ = [
    "Patient",
    "Order",
    "OrderTest",
    "Result",
    "ResultValueRecord",
    "Report",
    "Analyte",
    "TestGroup",
]
