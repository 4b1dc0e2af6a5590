"""
Unit tests for LabFlow database models
"""

import pytest
from datetime import datetime, date
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, StatementError

from labflow.models import Order, OrderTest, Patient, Report, Result, ResultValueRecord, TestGroup
from labflow.workflow.states import OrderPriority, OrderStatus, ReportStatus, ResultStatus


def make_order(patient_id="TEST001", order_id="ord-1", sample_id="05-Jan-2025-001", **overrides):
    data = {
        "id": order_id,
        "patient_id": patient_id,
        "order_date": date(2025, 1, 5),
        "daily_sequence": 1,
        "sample_id": sample_id,
        "color_code": "#EF4444",
        "color_name": "Red",
    }
    data.update(overrides)
    return Order(**data)


@pytest.fixture
def patient(db_session):
    patient = Patient(patient_id="TEST001", name="John Doe", sex="M", date_of_birth=date(1980, 1, 1))
    db_session.add(patient)
    db_session.commit()
    return patient


@pytest.fixture
def order(db_session, patient):
    order = make_order()
    db_session.add(order)
    db_session.commit()
    return order


class TestPatientModel:
    """Test Patient model functionality"""

    def test_create_patient(self, patient):
        assert patient.id is not None
        assert patient.created_at is not None
        assert patient.age is not None and patient.age >= 44

    def test_patient_unique_constraint(self, db_session, patient):
        """Test patient_id unique constraint"""
        db_session.add(Patient(patient_id="TEST001", name="Someone Else"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_age_without_birth_date(self):
        assert Patient(patient_id="P1", name="No Birthday").age is None

    def test_patient_relationships(self, db_session, patient, order):
        db_session.refresh(patient)
        assert [o.sample_id for o in patient.orders] == ["05-Jan-2025-001"]

    def test_patient_str_representation(self, patient):
        assert "TEST001" in repr(patient)
        assert "John Doe" in repr(patient)


class TestOrderModel:
    """Test Order model functionality"""

    def test_defaults(self, order):
        assert order.status == OrderStatus.ORDER_CREATED
        assert order.priority == OrderPriority.NORMAL
        assert order.total_amount == 0.0
        assert order.is_urgent is False

    def test_status_stored_as_value(self, db_session, order):
        """Test enum columns hold the operator-facing strings"""
        stored = db_session.execute(text("SELECT status, priority FROM orders")).one()
        assert tuple(stored) == ("Order Created", "Normal")

    def test_unknown_status_rejected(self, db_session, order):
        order.status = "Cancelled"
        with pytest.raises(StatementError):
            db_session.commit()

    def test_sample_id_unique(self, db_session, order):
        db_session.add(make_order(order_id="ord-2"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_test_lines_keep_position(self, db_session, order):
        db_session.add_all([
            OrderTest(order_id=order.id, test_name="Lipid Profile", position=1),
            OrderTest(order_id=order.id, test_name="Complete Blood Count (CBC)", position=0),
        ])
        db_session.commit()
        db_session.refresh(order)

        assert order.test_names == ["Complete Blood Count (CBC)", "Lipid Profile"]

    def test_duplicate_test_line_rejected(self, db_session, order):
        db_session.add_all([
            OrderTest(order_id=order.id, test_name="Lipid Profile", position=0),
            OrderTest(order_id=order.id, test_name="Lipid Profile", position=1),
        ])

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_to_dict(self, db_session, patient):
        order = make_order(priority=OrderPriority.STAT, collected_at=datetime(2025, 1, 5, 9, 0))
        db_session.add(order)
        db_session.commit()

        data = order.to_dict()

        assert data["status"] == "Order Created"
        assert data["priority"] == "STAT"
        assert data["is_urgent"] is True
        assert data["order_date"] == date(2025, 1, 5)
        assert data["collected_at"] == datetime(2025, 1, 5, 9, 0)


class TestResultModel:
    """Test Result and value models"""

    @pytest.fixture
    def result(self, db_session, order):
        result = Result(id="res-1", order_id=order.id, patient_id="TEST001", test_name="Liver Function Test (LFT)")
        result.values = [
            ResultValueRecord(parameter="SGOT (AST)", value="72", reference_range="10-40", flag="H", position=0),
            ResultValueRecord(parameter="SGPT (ALT)", value="40", reference_range="7-56", position=1),
        ]
        db_session.add(result)
        db_session.commit()
        return result

    def test_defaults(self, result):
        assert result.status == ResultStatus.ENTERED
        assert result.created_at is not None
        assert result.is_abnormal is True

    def test_one_result_per_test(self, db_session, result):
        db_session.add(Result(id="res-2", order_id=result.order_id, test_name=result.test_name))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_values_cascade(self, db_session, result):
        """Test deleting a result removes its values"""
        db_session.delete(result)
        db_session.commit()

        assert db_session.query(ResultValueRecord).count() == 0

    def test_value_to_dict(self, result):
        high, normal = [v.to_dict() for v in result.values]

        assert high["flag"] == "H"
        assert high["flag_description"] == "High"
        assert normal["flag"] == ""
        assert normal["flag_description"] == "Normal"

    def test_result_to_dict(self, result):
        data = result.to_dict()
        assert data["status"] == "Entered"
        assert data["test_name"] == "Liver Function Test (LFT)"


class TestReportAndCatalogModels:
    """Test report records and catalog entries"""

    def test_report_defaults(self, db_session, order):
        db_session.add(Result(id="res-1", order_id=order.id, test_name="Lipid Profile"))
        report = Report(id="rep-1", order_id=order.id, result_id="res-1", doctor="Dr. Smith")
        db_session.add(report)
        db_session.commit()

        assert report.status == ReportStatus.GENERATED
        assert report.to_dict()["status"] == "Generated"

    def test_test_group_analytes(self, db_session):
        group = TestGroup(code="LFT", name="Liver Function Test (LFT)", analytes=["SGOT (AST)", "SGPT (ALT)"], price=450.0)
        db_session.add(group)
        db_session.commit()
        db_session.expire_all()

        assert db_session.get(TestGroup, group.id).to_dict()["analytes"] == ["SGOT (AST)", "SGPT (ALT)"]
