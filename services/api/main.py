"""FastAPI application for the invoice draft engine.

Thin HTTP surface over the parsing, allocation and price-history core:
- Health and readiness checks for Kubernetes
- Invoice text and PDF parsing into validated drafts
- Re-validation of drafts edited during review
- Surcharge allocation and price outlier correction
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time

from fastapi import FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, Field, ValidationError

from services.api import metrics
from services.costing.allocation import allocate_surcharges
from services.costing.schema import AllocationMode, AllocationShare, PreparedAllocationItem
from services.ingest.service import DocumentTextExtractor, parse_invoice_document
from services.parsing.factory import TemplateRegistry
from services.parsing.schema import InvoiceDraft, ParserFeedbackEntry
from services.parsing.service import parse_invoice_text
from services.parsing.validation import validate_draft
from services.prices.corrections import validate_price_correction
from services.prices.outliers import correct_price_outliers
from services.prices.schema import PriceCorrection, PricePoint
from services.shared.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Invoice Draft Engine",
    description="Supplier invoice parsing, reconciliation and cost allocation API",
    version=settings.service_version,
)

text_extractor = DocumentTextExtractor(settings)

PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class TemplateInfo(BaseModel):
    """Supported invoice template."""

    id: str
    label: str
    version: str
    description: str


class ParseTextRequest(BaseModel):
    """Extracted invoice text to parse."""

    text: str
    supplier: str = Field(..., min_length=1)
    feedback: list[ParserFeedbackEntry] = []
    invoice_no_override: str | None = None
    invoice_date_override: str | None = None


class AllocationRequest(BaseModel):
    """Prepared product lines and the pooled surcharge to distribute."""

    items: list[PreparedAllocationItem]
    total_surcharge_net: float
    mode: AllocationMode


class OutlierRequest(BaseModel):
    """Price series to correct."""

    series: list[PricePoint]
    threshold: float | None = Field(None, gt=0)


class PriceCorrectionRequest(BaseModel):
    """User-confirmed price fix (validated before it is persisted elsewhere)."""

    history_id: int
    price_per_base_unit_net: float


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/api/v1/templates", response_model=list[TemplateInfo], tags=["Invoices"])
def list_templates() -> list[TemplateInfo]:
    """List supported supplier templates."""
    templates = []
    for template_id in TemplateRegistry.list_templates():
        template_class = TemplateRegistry.get_template_class(template_id)
        templates.append(
            TemplateInfo(
                id=template_id,
                label=template_class.label,
                version=template_class.version,
                description=template_class.description,
            )
        )
    return templates


@app.post("/api/v1/invoices/parse", response_model=InvoiceDraft, tags=["Invoices"])
def parse_invoice(request: ParseTextRequest) -> InvoiceDraft:
    """Parse extracted invoice text into a validated draft.

    Unparseable text is not an error: the draft comes back with no items
    and the warning "no line items recognized".
    """
    return parse_invoice_text(
        request.text,
        request.supplier,
        request.feedback,
        settings=settings,
        invoice_no_override=request.invoice_no_override,
        invoice_date_override=request.invoice_date_override,
    )


@app.post("/api/v1/invoices/upload", response_model=InvoiceDraft, tags=["Invoices"])
async def upload_invoice(
    file: UploadFile = File(..., description="Invoice PDF"),  # noqa: B008
    supplier: str = Form(..., min_length=1),
    invoice_no_override: str | None = Form(None),
    invoice_date_override: str | None = Form(None),
) -> InvoiceDraft:
    """Upload an invoice PDF and parse it into a validated draft.

    The PDF text layer is used when present; scanned documents go through
    the Tesseract OCR fallback.

    ## Usage Example

    ```bash
    curl -X POST "http://localhost:8000/api/v1/invoices/upload" \\
      -F "file=@invoice.pdf" -F "supplier=Meyer & Horn"
    ```

    ## Error Handling

    - Returns 400 if the file is missing a name, is not a PDF, is empty or too large
    - Returns 200 with warnings if no text or no line items could be recovered

    Raises:
        HTTPException: If the upload is invalid
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    if file.content_type not in PDF_CONTENT_TYPES:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only PDF files are supported.",
        )

    content = await file.read()
    if not content:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    if len(content) > settings.max_upload_bytes:
        metrics.invoices_uploaded_total.labels(status="rejected").inc()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large: {len(content)} bytes (max {settings.max_upload_bytes})",
        )

    metrics.invoice_upload_size_bytes.observe(len(content))
    metrics.invoices_uploaded_total.labels(status="success").inc()

    return parse_invoice_document(
        content,
        supplier,
        invoice_no_override=invoice_no_override,
        invoice_date_override=invoice_date_override,
        settings=settings,
        extractor=text_extractor,
    )


@app.post("/api/v1/invoices/validate", response_model=InvoiceDraft, tags=["Invoices"])
def revalidate_invoice(draft: InvoiceDraft) -> InvoiceDraft:
    """Recompute totals and diagnostics of a draft edited during review."""
    return validate_draft(draft, variance_warning_percent=settings.variance_warning_percent)


@app.post("/api/v1/allocations", response_model=list[AllocationShare], tags=["Costing"])
def allocate(request: AllocationRequest) -> list[AllocationShare]:
    """Distribute a pooled surcharge over prepared product lines, one share per item in input order."""
    return allocate_surcharges(request.items, request.total_surcharge_net, request.mode)


@app.post("/api/v1/prices/outliers", response_model=list[PricePoint], tags=["Prices"])
def correct_outliers(request: OutlierRequest) -> list[PricePoint]:
    """Return the series with statistical outliers replaced (nothing is stored)."""
    threshold = request.threshold or settings.outlier_threshold
    return correct_price_outliers(request.series, threshold=threshold)


@app.post("/api/v1/prices/corrections/validate", response_model=PriceCorrection, tags=["Prices"])
def validate_correction(request: PriceCorrectionRequest) -> PriceCorrection:
    """Validate and normalize a price correction before it is persisted.

    Raises:
        HTTPException: 400 if the id or price is invalid
    """
    try:
        return validate_price_correction(request.history_id, request.price_per_base_unit_net)
    except ValidationError as e:
        logger.info(f"Rejected price correction for history row {request.history_id}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid price correction: " + "; ".join(error["msg"] for error in e.errors()),
        ) from e
