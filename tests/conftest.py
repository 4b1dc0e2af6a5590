"""
Pytest configuration and fixtures for LabFlow tests
"""

import pytest
from datetime import datetime, date, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labflow.core.database import create_tables
from labflow.services.catalog import TestCatalog
from labflow.services.record_store import SQLAlchemyRecordStore
from labflow.services.workflow_service import LabWorkflowService
from labflow.workflow.order_state import OrderSnapshot
from labflow.workflow.result_state import ResultValue
from labflow.workflow.states import OrderStatus, OrderPriority


LIPID = "Lipid Profile"
LFT = "Liver Function Test (LFT)"
CBC = "Complete Blood Count (CBC)"


class FixedClock:
    """Deterministic clock; every reading moves time forward by one second"""

    def __init__(self, start: datetime = datetime(2025, 1, 5, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def test_engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    create_tables(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_db(test_engine):
    """Session factory bound to the test database"""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db_session(test_db):
    """Create a database session for testing"""
    session = test_db()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session) -> SQLAlchemyRecordStore:
    return SQLAlchemyRecordStore(db_session)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def test_catalog(store) -> TestCatalog:
    """Catalog seeded into the test database"""
    return TestCatalog().initialize(store)


@pytest.fixture
def service(store, test_catalog, clock) -> LabWorkflowService:
    return LabWorkflowService(store, catalog=test_catalog, clock=clock)


@pytest.fixture
def sample_patient(service) -> dict:
    """Create a sample male patient for testing"""
    return service.register_patient(
        patient_id="TEST001",
        name="John Doe",
        sex="M",
        date_of_birth=date(1980, 1, 1),
        phone="555-0123",
        email="john.doe@example.com",
    )


@pytest.fixture
def female_patient(service) -> dict:
    """Create a sample female patient for testing"""
    return service.register_patient(patient_id="TEST002", name="Jane Smith", sex="F")


@pytest.fixture
def sample_order(service, sample_patient) -> dict:
    """Order with three tests, freshly created"""
    return service.create_order(sample_patient["patient_id"], [LIPID, LFT, CBC])


@pytest.fixture
def in_progress_order(service, sample_order) -> dict:
    """Sample order that has been collected and taken into processing"""
    service.request_order_transition(sample_order["id"], OrderStatus.SAMPLE_COLLECTION, "Nurse Johnson")
    return service.request_order_transition(sample_order["id"], OrderStatus.IN_PROGRESS, "Tech Davis")


# Test data generators
def generate_order_snapshot(**overrides) -> OrderSnapshot:
    """Generate a workflow order snapshot"""
    data = {
        "id": "ORD001",
        "status": OrderStatus.ORDER_CREATED,
        "tests": (LIPID, LFT, CBC),
        "patient_id": "TEST001",
        "priority": OrderPriority.NORMAL,
        "order_date": date(2025, 1, 5),
    }
    data.update(overrides)
    return OrderSnapshot(**data)


def generate_lipid_values(**overrides):
    """Generate lipid profile values as submitted by a technician"""
    values = {
        "Total Cholesterol": "180",
        "HDL Cholesterol": "45",
        "LDL Cholesterol": "90",
    }
    values.update(overrides)
    return [
        {"parameter": name, "value": value, "unit": "mg/dL"}
        for name, value in values.items()
    ]


def generate_values(test_name: str):
    """Normal values for any of the seeded test groups"""
    if test_name == LIPID:
        return generate_lipid_values()
    if test_name == LFT:
        return [
            {"parameter": "SGOT (AST)", "value": "35", "unit": "U/L"},
            {"parameter": "SGPT (ALT)", "value": "40", "unit": "U/L"},
        ]
    return [
        {"parameter": "Hemoglobin", "value": "14.5", "unit": "g/dL"},
        {"parameter": "WBC Count", "value": "7,500", "unit": "/μL"},
        {"parameter": "Platelet Count", "value": "250,000", "unit": "/μL"},
    ]


def generate_result_value(**overrides) -> ResultValue:
    data = {
        "parameter": "SGOT (AST)",
        "value": "35",
        "unit": "U/L",
        "reference_range": "10-40",
    }
    data.update(overrides)
    return ResultValue(**data)
