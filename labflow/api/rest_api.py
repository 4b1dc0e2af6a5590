"""
REST API for the LabFlow laboratory workflow system
Exposes order intake, result entry and review, and flag interpretation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from ..core.config import settings
from ..core.database import create_tables, db_manager, get_database_session, get_session
from ..core.exceptions import (
    ConcurrencyConflict, LIMSException, RecordNotFound, ValidationException, WorkflowException
)
from ..services.catalog import catalog
from ..services.record_store import SQLAlchemyRecordStore
from ..services.workflow_service import LabWorkflowService
from ..workflow.flags import classify_with_criticals, flag_description
from .schemas import (
    AnalyteResponse, ClassifyRequest, ClassifyResponse,
    OrderCreate, OrderResponse, PatientCreate, PatientResponse,
    ReconciliationResponse, ReportRequest, ResultResponse, ResultSubmit,
    ReviewRequest, TransitionRequest,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and load the test catalog before serving"""
    logger.info("Starting LabFlow API server...")
    create_tables()
    session = get_session()
    try:
        catalog.initialize(SQLAlchemyRecordStore(session), seed=settings.catalog_seed_on_startup)
    finally:
        session.close()
    logger.info("LabFlow API server started successfully")
    yield
    logger.info("Shutting down LabFlow API server...")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Laboratory order and result workflow API",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api_cors_origins,
    allow_credentials=True,
    allow_methods=settings.api_cors_methods,
    allow_headers=settings.api_cors_headers,
)


def get_workflow_service(db: Session = Depends(get_database_session)) -> LabWorkflowService:
    """Workflow service bound to the request's database session"""
    return LabWorkflowService(SQLAlchemyRecordStore(db), catalog=catalog)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy" if db_manager.test_connection() else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.app_version,
        "environment": settings.environment,
        "catalog_loaded": catalog.initialized,
    }


# Patient Management Endpoints
@app.post("/patients/", response_model=PatientResponse, status_code=status.HTTP_201_CREATED, tags=["Patients"])
async def create_patient(
    patient: PatientCreate,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Register a patient"""
    return service.register_patient(**patient.model_dump())


@app.get("/patients/{patient_id}", response_model=PatientResponse, tags=["Patients"])
async def get_patient(
    patient_id: str,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Get patient by patient identifier"""
    return service.get_patient(patient_id)


# Order Endpoints
@app.post("/orders/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED, tags=["Orders"])
async def create_order(
    order: OrderCreate,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Create an order; the sample ID and tube color are assigned here"""
    return service.create_order(
        patient_id=order.patient_id,
        tests=order.tests,
        priority=order.priority,
        total_amount=order.total_amount,
        order_date=order.order_date,
    )


@app.get("/orders/", response_model=List[OrderResponse], tags=["Orders"])
async def get_orders(
    patient_id: Optional[str] = Query(None),
    order_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Get orders with optional filtering, newest first"""
    return service.list_orders(status=order_status, patient_id=patient_id, limit=limit)


@app.get("/orders/{order_id}", response_model=OrderResponse, tags=["Orders"])
async def get_order(
    order_id: str,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    return service.get_order(order_id)


@app.post("/orders/{order_id}/transition", response_model=OrderResponse, tags=["Orders"])
async def transition_order(
    order_id: str,
    request: TransitionRequest,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Manual order status change; rejected moves return the reason verbatim"""
    return service.request_order_transition(order_id, request.status, request.actor)


@app.post("/orders/{order_id}/reconcile", response_model=ReconciliationResponse, tags=["Orders"])
async def reconcile_order(
    order_id: str,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Re-derive the order status from its results"""
    return service.reconcile_order(order_id).to_dict()


# Result Endpoints
@app.post("/orders/{order_id}/results", response_model=ResultResponse, tags=["Results"])
async def submit_result(
    order_id: str,
    result: ResultSubmit,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Enter or replace the values for one ordered test"""
    values = [value.model_dump() for value in result.values]
    return service.submit_result(order_id, result.test_name, values, result.actor)


@app.get("/orders/{order_id}/results", response_model=List[ResultResponse], tags=["Results"])
async def get_order_results(
    order_id: str,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    return service.list_results(order_id)


@app.post("/results/{result_id}/approve", response_model=ResultResponse, tags=["Results"])
async def approve_result(
    result_id: str,
    request: ReviewRequest,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    return service.approve_result(result_id, request.actor)


@app.post("/results/{result_id}/reject", response_model=ResultResponse, tags=["Results"])
async def reject_result(
    result_id: str,
    request: ReviewRequest,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    return service.reject_result(result_id, request.actor)


@app.post("/results/{result_id}/report", response_model=ResultResponse, tags=["Results"])
async def report_result(
    result_id: str,
    request: ReportRequest,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    return service.mark_result_reported(result_id, request.doctor)


@app.post("/results/{result_id}/revert", response_model=ResultResponse, tags=["Results"])
async def revert_result(
    result_id: str,
    service: LabWorkflowService = Depends(get_workflow_service)
):
    """Send a reported result back to review for correction"""
    return service.revert_result(result_id)


# Flag and Catalog Endpoints
@app.post("/flags/classify", response_model=ClassifyResponse, tags=["Flags"])
async def classify_value(request: ClassifyRequest):
    """Classify a value against a reference range"""
    flag = classify_with_criticals(
        request.value, request.reference_range, request.sex,
        request.low_critical, request.high_critical,
    )
    return {"flag": flag.value, "description": flag_description(flag)}


@app.get("/catalog/analytes", response_model=List[AnalyteResponse], tags=["Catalog"])
async def get_analytes():
    return catalog.analytes()


# Exception handlers
def _error_response(status_code: int, exc: LIMSException) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_code": exc.error_code}
    )


@app.exception_handler(LIMSException)
async def lims_exception_handler(request, exc: LIMSException):
    return _error_response(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(WorkflowException)
async def workflow_exception_handler(request, exc: WorkflowException):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(ConcurrencyConflict)
async def concurrency_exception_handler(request, exc: ConcurrencyConflict):
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(RecordNotFound)
async def not_found_exception_handler(request, exc: RecordNotFound):
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(ValidationException)
async def validation_exception_handler(request, exc: ValidationException):
    return _error_response(422, exc)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower()
    )
