"""
Tests for the LabFlow REST API
"""

import pytest
from fastapi.testclient import TestClient

from labflow.api import rest_api
from labflow.api.rest_api import app
from labflow.core.database import get_database_session
from labflow.services.catalog import catalog
from labflow.workflow.order_state import MSG_COLLECT_BEFORE_PROCESSING
from tests.conftest import CBC, LFT, LIPID, generate_lipid_values


@pytest.fixture
def client(db_session, store):
    """API client bound to the test database with the catalog loaded"""

    def override_session():
        yield db_session

    app.dependency_overrides[get_database_session] = override_session
    catalog.initialize(store)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        catalog.reset()


@pytest.fixture
def patient(client):
    response = client.post("/patients/", json={"patient_id": "TEST001", "name": "John Doe", "sex": "M"})
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def order(client, patient):
    response = client.post("/orders/", json={"patient_id": patient["patient_id"], "tests": [LIPID, LFT, CBC]})
    assert response.status_code == 201
    return response.json()


def collect_and_process(client, order_id):
    client.post(f"/orders/{order_id}/transition", json={"status": "Sample Collection", "actor": "Nurse Johnson"})
    return client.post(f"/orders/{order_id}/transition", json={"status": "In Progress", "actor": "Tech Davis"})


class TestSystemEndpoints:
    """Test health and catalog endpoints"""

    def test_health(self, client, monkeypatch):
        monkeypatch.setattr(rest_api.db_manager, "test_connection", lambda: True)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["catalog_loaded"] is True

    def test_catalog_analytes(self, client):
        response = client.get("/catalog/analytes")

        assert response.status_code == 200
        names = [a["name"] for a in response.json()]
        assert "Hemoglobin" in names
        assert len(names) == 8

    def test_classify(self, client):
        response = client.post("/flags/classify", json={"value": "28", "reference_range": "M: >40, F: >50", "sex": "F"})

        assert response.status_code == 200
        assert response.json() == {"flag": "L", "description": "Low"}

    def test_classify_critical(self, client):
        response = client.post("/flags/classify", json={
            "value": "350", "reference_range": "<200", "high_critical": "300",
        })
        assert response.json()["flag"] == "C"

    def test_classify_unparseable(self, client):
        response = client.post("/flags/classify", json={"value": "abc", "reference_range": "10-40"})
        assert response.json() == {"flag": "", "description": "Normal"}


class TestPatientEndpoints:
    """Test patient endpoints"""

    def test_create_and_get(self, client, patient):
        response = client.get("/patients/TEST001")

        assert response.status_code == 200
        assert response.json()["name"] == "John Doe"
        assert response.json()["sex"] == "M"

    def test_not_found(self, client):
        response = client.get("/patients/NOPE")

        assert response.status_code == 404
        assert response.json()["error_code"] == "RECORD_NOT_FOUND"

    def test_invalid_email(self, client):
        response = client.post("/patients/", json={"name": "John Doe", "email": "not-an-email"})
        assert response.status_code == 422

    def test_invalid_sex(self, client):
        """Test service validation failures map to 422 with the error body"""
        response = client.post("/patients/", json={"name": "John Doe", "sex": "X"})

        assert response.status_code == 422
        assert response.json()["detail"].startswith("Invalid sex 'X'")
        assert response.json()["error_code"] is None


class TestOrderEndpoints:
    """Test order endpoints"""

    def test_create_order(self, order):
        assert order["sample_id"].endswith("-001")
        assert order["color_name"] == "Red"
        assert order["status"] == "Order Created"
        assert order["tests"] == [LIPID, LFT, CBC]
        assert order["total_amount"] == 1300.0

    def test_create_order_requires_tests(self, client, patient):
        response = client.post("/orders/", json={"patient_id": "TEST001", "tests": []})
        assert response.status_code == 422

    def test_create_order_unknown_patient(self, client):
        response = client.post("/orders/", json={"patient_id": "NOPE", "tests": [LIPID]})
        assert response.status_code == 404

    def test_list_and_get(self, client, order):
        listed = client.get("/orders/", params={"status": "Order Created"})
        assert [o["id"] for o in listed.json()] == [order["id"]]
        assert client.get("/orders/", params={"status": "Completed"}).json() == []

        response = client.get(f"/orders/{order['id']}")
        assert response.status_code == 200
        assert response.json()["sample_id"] == order["sample_id"]

    def test_precondition_failure(self, client, order):
        """Test a guarded transition returns the operator-facing reason verbatim"""
        response = client.post(f"/orders/{order['id']}/transition", json={"status": "In Progress", "actor": "Tech"})

        assert response.status_code == 409
        assert response.json() == {"detail": MSG_COLLECT_BEFORE_PROCESSING, "error_code": "PRECONDITION_NOT_MET"}

    def test_unknown_status(self, client, order):
        response = client.post(f"/orders/{order['id']}/transition", json={"status": "Cancelled"})

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    def test_transition(self, client, order):
        response = collect_and_process(client, order["id"])

        assert response.status_code == 200
        assert response.json()["status"] == "In Progress"
        assert response.json()["collected_by"] == "Nurse Johnson"

    def test_reconcile(self, client, order):
        response = client.post(f"/orders/{order['id']}/reconcile")

        assert response.status_code == 200
        assert response.json()["changed"] is False
        assert response.json()["new_status"] == "Order Created"
        assert response.json()["total"] == 3


class TestResultEndpoints:
    """Test result entry and review endpoints"""

    def test_results_require_collection(self, client, order):
        response = client.post(f"/orders/{order['id']}/results", json={
            "test_name": LIPID, "values": generate_lipid_values(), "actor": "Tech",
        })

        assert response.status_code == 409
        assert response.json()["detail"] == "Sample must be collected before entering results."

    def test_result_lifecycle(self, client, order):
        collect_and_process(client, order["id"])

        submitted = client.post(f"/orders/{order['id']}/results", json={
            "test_name": LIPID, "values": generate_lipid_values(**{"LDL Cholesterol": "160"}), "actor": "Tech Davis",
        })
        assert submitted.status_code == 200
        result = submitted.json()
        assert result["status"] == "Under Review"
        assert result["is_abnormal"] is True
        assert [v["flag"] for v in result["values"]] == ["", "", "H"]

        approved = client.post(f"/results/{result['id']}/approve", json={"actor": "Dr. Smith"})
        assert approved.json()["status"] == "Approved"
        assert approved.json()["reviewed_by"] == "Dr. Smith"

        reported = client.post(f"/results/{result['id']}/report", json={"doctor": "Dr. Smith"})
        assert reported.json()["status"] == "Reported"

        reverted = client.post(f"/results/{result['id']}/revert")
        assert reverted.json()["status"] == "Under Review"

        listed = client.get(f"/orders/{order['id']}/results")
        assert [r["id"] for r in listed.json()] == [result["id"]]

    def test_reject(self, client, order):
        collect_and_process(client, order["id"])
        result = client.post(f"/orders/{order['id']}/results", json={
            "test_name": LIPID, "values": generate_lipid_values(),
        }).json()

        response = client.post(f"/results/{result['id']}/reject", json={"actor": "Dr. Smith"})

        assert response.json()["status"] == "Entered"
        assert len(response.json()["values"]) == 3

    def test_invalid_review(self, client, order):
        collect_and_process(client, order["id"])
        result = client.post(f"/orders/{order['id']}/results", json={
            "test_name": LIPID, "values": generate_lipid_values(),
        }).json()

        response = client.post(f"/results/{result['id']}/report", json={})

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    def test_test_not_on_order(self, client, order):
        collect_and_process(client, order["id"])
        response = client.post(f"/orders/{order['id']}/results", json={
            "test_name": "Thyroid Profile", "values": generate_lipid_values(),
        })
        assert response.status_code == 422

    def test_unknown_result(self, client):
        response = client.post("/results/missing/approve", json={"actor": "Dr. Smith"})
        assert response.status_code == 404
