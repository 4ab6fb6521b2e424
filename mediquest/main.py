"""
MediQuest AI API - Healthcare Portal AI Flows

Exposes the portal's AI-assisted features:
- Scan analysis pipeline (structured report, annotated image, stored record)
- Medical report summarization
- Medicine details lookup
- Prescription-to-inventory matching
- Health risk prediction from the patient record

Every AI result is advisory and carries no medical authority.
"""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mediquest.config.config import Settings, get_settings
from mediquest.config.logging_config import configure_logging, get_logger, log_request_context
from mediquest.errors import FlowError
from mediquest.models.flow_models import (
    DiseasePrediction,
    DiseasePredictionRequest,
    DiseaseQuestionnaire,
    MedicineData,
    MedicineDetails,
    MedicineDetailsRequest,
    PrescriptionCheckRequest,
    PrescriptionCheckResult,
    ReportSummary,
    ReportSummaryRequest,
)
from mediquest.models.models import ErrorResponse, HealthResponse, HealthStatus
from mediquest.models.scan_models import (
    AnnotatedImageResult,
    AnnotateScanRequest,
    ScanAnalysisRequest,
    ScanAnalysisResult,
    StructuredReport,
)
from mediquest.services.container import ServiceContainer

logger = get_logger(__name__)


def get_services(request: Request) -> ServiceContainer:
    """Dependency returning the container built at startup."""
    return request.app.state.services


def create_app(
    settings: Settings | None = None,
    services: ServiceContainer | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.
        services: Optional prebuilt service container for testing. Built
            from settings at startup when omitted.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Owns the service container: built on startup, closed on shutdown.
        """
        logger.info(
            "Application starting",
            app_name=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
            config=settings.get_safe_config_dict(),
        )
        app.state.services = services or ServiceContainer.build(settings)

        yield

        await app.state.services.aclose()
        logger.info("Application shutting down")

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        start_time = time.perf_counter()

        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        request.state.request_id = request_id

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )

        return response

    # Exception handlers
    @app.exception_handler(FlowError)
    async def flow_error_handler(request: Request, exc: FlowError):
        """Render typed flow errors with their status code."""
        logger.warning("Flow error", error_code=exc.error_code, error=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.error_code,
                message=exc.message,
                details=exc.details or None,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured response."""
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=f"HTTP_{exc.status_code}",
                message=str(exc.detail),
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="INTERNAL_ERROR",
                message="An unexpected error occurred",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/", tags=["Root"])
    async def root(request: Request):
        """Root endpoint with API information."""
        settings: Settings = request.app.state.settings
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs" if settings.debug else "disabled",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint for monitoring.

        Returns system health status and component checks.
        """
        settings: Settings = request.app.state.settings
        checks = {
            "api": True,
            "llm_configured": bool(settings.llm_api_key),
            "blob_store_configured": bool(settings.blob_bucket),
        }

        if all(checks.values()):
            status = HealthStatus.HEALTHY
        elif checks["api"]:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return HealthResponse(
            status=status,
            version=settings.app_version,
            environment=settings.environment,
            checks=checks,
        )

    @app.post("/api/v1/scans/analyze", response_model=ScanAnalysisResult, tags=["Scans"])
    async def analyze_scan(
        body: ScanAnalysisRequest,
        patient_id: str = Query(..., min_length=1, description="Patient that owns the scan"),
        services: ServiceContainer = Depends(get_services),
    ) -> ScanAnalysisResult:
        """
        Run the full scan pipeline.

        Preprocessing, text analysis, image annotation, then upload and
        record creation. A storage failure is reported in
        `persistence_error` without failing the analysis.
        """
        logger.info("Scan analysis request received", scan_type=body.scan_type.value)
        return await services.scan_pipeline.run(body, patient_id)

    @app.post("/api/v1/scans/text-analysis", response_model=StructuredReport, tags=["Scans"])
    async def scan_text_analysis(
        body: ScanAnalysisRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> StructuredReport:
        """Run only the text analysis stage."""
        return await services.text_analysis.analyze(body)

    @app.post("/api/v1/scans/annotate", response_model=AnnotatedImageResult, tags=["Scans"])
    async def scan_annotate(
        body: AnnotateScanRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> AnnotatedImageResult:
        """Run only the image annotation stage for a previously analyzed scan."""
        return await services.image_transform.annotate_request(body)

    @app.post("/api/v1/reports/summarize", response_model=ReportSummary, tags=["Reports"])
    async def summarize_report(
        body: ReportSummaryRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> ReportSummary:
        """Summarize a medical report in lay terms."""
        return await services.report_summary.summarize(body)

    @app.post("/api/v1/medicines/details", response_model=MedicineDetails, tags=["Medicines"])
    async def medicine_details(
        body: MedicineDetailsRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> MedicineDetails:
        """Structured details for adding a medicine to a store inventory."""
        return await services.medicine_details.generate_details(body)

    @app.post("/api/v1/medicines/full-details", response_model=MedicineData, tags=["Medicines"])
    async def medicine_full_details(
        body: MedicineDetailsRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> MedicineData:
        """Full medicine monograph."""
        return await services.medicine_details.get_full_details(body)

    @app.post(
        "/api/v1/prescriptions/check-inventory",
        response_model=PrescriptionCheckResult,
        tags=["Prescriptions"],
    )
    async def check_prescription_inventory(
        body: PrescriptionCheckRequest,
        services: ServiceContainer = Depends(get_services),
    ) -> PrescriptionCheckResult:
        """Match a prescription against a store's stock."""
        return await services.prescription_inventory.check(body)

    @app.post(
        "/api/v1/patients/{patient_id}/disease-prediction",
        response_model=DiseasePrediction,
        tags=["Patients"],
    )
    async def predict_disease(
        patient_id: str,
        body: DiseaseQuestionnaire,
        services: ServiceContainer = Depends(get_services),
    ) -> DiseasePrediction:
        """Health risk analysis over the patient's full record."""
        request = DiseasePredictionRequest(patient_id=patient_id, **body.model_dump())
        return await services.disease_prediction.predict(request)


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mediquest.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
