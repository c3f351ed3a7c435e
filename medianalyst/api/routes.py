"""
API routes for MediAnalyst.

Exposes the analysis wizard, the saved history, report downloads and
the image editor as REST endpoints.
"""

from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile

from medianalyst.api.middleware import limiter
from medianalyst.config import settings
from medianalyst.core.errors import (
    ImageGenerationFailure,
    InvalidRequestError,
    MediAnalystError,
    RecordNotFoundError,
)
from medianalyst.models.schemas import (
    ChatRequest,
    ChatResponse,
    CreateRunResponse,
    ErrorResponse,
    HealthResponse,
    HistoryItem,
    HistoryListResponse,
    MedicalAnalysis,
    ProductUpdateRequest,
    RunStateResponse,
    SearchRequest,
)
from medianalyst.services.analysis_pipeline import (
    AnalysisPipeline,
    PipelineRegistry,
    get_pipeline_registry,
)
from medianalyst.services.report_generator import report_filename
from medianalyst.utils.file_validators import file_validator
from medianalyst.utils.logger import get_logger

logger = get_logger("routes")

router = APIRouter()

# Each call costs a generative request
GENERATION_LIMIT = f"{settings.rate_limit_per_minute}/minute;{settings.rate_limit_per_hour}/hour"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    404: {"model": ErrorResponse, "description": "Run or record not found"},
    409: {"model": ErrorResponse, "description": "Not allowed in the current step"},
    502: {"model": ErrorResponse, "description": "Generative service failed"},
    503: {"model": ErrorResponse, "description": "Generative service not configured"},
}


def _get_run(registry: PipelineRegistry, run_id: str) -> AnalysisPipeline:
    pipeline = registry.get(run_id)
    if pipeline is None:
        raise RecordNotFoundError(f"Run not found: {run_id}")
    return pipeline


def _html_download(filename: str, html: str) -> Response:
    """Serve a report as an attachment with a UTF-8 file name."""
    disposition = f"attachment; filename=\"report.html\"; filename*=UTF-8''{quote(filename)}"
    return Response(
        content=html,
        media_type="text/html; charset=utf-8",
        headers={"Content-Disposition": disposition}
    )


def _history_item(record: MedicalAnalysis) -> HistoryItem:
    return HistoryItem(
        id=record.id,
        timestamp=record.timestamp,
        brand_name=record.product.brand_name,
        product_name=record.product.product_name,
        indications=record.product.indications
    )


# =============================================================================
# Health Check
# =============================================================================

@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["System"],
    summary="Health check endpoint"
)
async def health_check(registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """
    Check if the service is healthy and running.

    Also reports whether the generative service is configured.
    """
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        generation_available=registry.engine.is_available()
    )


# =============================================================================
# Analysis Wizard
# =============================================================================

@router.post(
    "/runs",
    response_model=CreateRunResponse,
    status_code=201,
    tags=["Wizard"],
    summary="Start a new analysis run"
)
async def create_run(registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """Open a wizard run in the idle step."""
    pipeline = registry.create()
    return CreateRunResponse(run_id=pipeline.run_id, step=pipeline.step)


@router.get(
    "/runs/{run_id}",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Get the current step and results of a run",
    responses=ERROR_RESPONSES
)
async def get_run(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    return _get_run(registry, run_id).snapshot()


@router.delete(
    "/runs/{run_id}",
    status_code=204,
    tags=["Wizard"],
    summary="Discard a run"
)
async def delete_run(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    if not registry.remove(run_id):
        raise RecordNotFoundError(f"Run not found: {run_id}")
    return Response(status_code=204)


@router.post(
    "/runs/{run_id}/search",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Search the web for a product",
    responses=ERROR_RESPONSES
)
@limiter.limit(GENERATION_LIMIT)
async def search_product(
    request: Request,
    run_id: str,
    body: SearchRequest,
    registry: PipelineRegistry = Depends(get_pipeline_registry)
):
    """
    Look up the product's package insert and reimbursement status.

    On success the run moves to product review. On failure it returns
    to the idle step.
    """
    pipeline = _get_run(registry, run_id)
    await pipeline.search(body.brand, body.product)
    return pipeline.snapshot()


@router.patch(
    "/runs/{run_id}/product",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Edit the product facts under review",
    responses=ERROR_RESPONSES
)
async def update_product(
    run_id: str,
    body: ProductUpdateRequest,
    registry: PipelineRegistry = Depends(get_pipeline_registry)
):
    pipeline = _get_run(registry, run_id)
    pipeline.update_product(**body.model_dump(exclude_none=True))
    return pipeline.snapshot()


@router.post(
    "/runs/{run_id}/confirm-product",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Run ingredient, pathology and pharmacology analysis",
    responses=ERROR_RESPONSES
)
@limiter.limit(GENERATION_LIMIT)
async def confirm_product(
    request: Request,
    run_id: str,
    registry: PipelineRegistry = Depends(get_pipeline_registry)
):
    """
    Confirm the reviewed product and analyze it.

    The three analysis steps run back to back. If one fails, the run
    returns to product review and the error names the failed step.
    """
    pipeline = _get_run(registry, run_id)
    await pipeline.confirm_product()
    return pipeline.snapshot()


@router.post(
    "/runs/{run_id}/confirm-report",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Accept the report and open the chat",
    responses=ERROR_RESPONSES
)
async def confirm_report(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """Open the follow-up chat and save the analysis to history."""
    pipeline = _get_run(registry, run_id)
    pipeline.confirm_report()
    return pipeline.snapshot()


@router.post(
    "/runs/{run_id}/chat",
    response_model=ChatResponse,
    tags=["Wizard"],
    summary="Ask a question about the report",
    responses=ERROR_RESPONSES
)
@limiter.limit(GENERATION_LIMIT)
async def chat(
    request: Request,
    run_id: str,
    body: ChatRequest,
    registry: PipelineRegistry = Depends(get_pipeline_registry)
):
    """
    Send a chat message.

    A failed reply is returned as an error message in the transcript,
    not as an HTTP error.
    """
    pipeline = _get_run(registry, run_id)
    reply = await pipeline.send_message(body.message)
    return ChatResponse(reply=reply, chat_history=pipeline.snapshot().chat_history)


@router.post(
    "/runs/{run_id}/save",
    response_model=HistoryItem,
    tags=["Wizard"],
    summary="Save the current report to history",
    responses=ERROR_RESPONSES
)
async def save_run(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    record = _get_run(registry, run_id).save_to_history()
    return _history_item(record)


@router.post(
    "/runs/{run_id}/reset",
    response_model=RunStateResponse,
    tags=["Wizard"],
    summary="Start over with a new product",
    responses=ERROR_RESPONSES
)
async def reset_run(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    pipeline = _get_run(registry, run_id)
    pipeline.reset()
    return pipeline.snapshot()


@router.get(
    "/runs/{run_id}/report",
    tags=["Reports"],
    summary="Download the report of a run as HTML",
    responses=ERROR_RESPONSES
)
async def download_run_report(run_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """Render the report; a timestamped copy is kept in the output directory."""
    pipeline = _get_run(registry, run_id)
    filename, html = pipeline.render_report()
    registry.report_generator.save_html(html, pipeline.state.report.product)
    return _html_download(filename, html)


# =============================================================================
# History
# =============================================================================

@router.get(
    "/history",
    response_model=HistoryListResponse,
    tags=["History"],
    summary="List saved analyses, most recent first"
)
async def list_history(registry: PipelineRegistry = Depends(get_pipeline_registry)):
    records = registry.history.list()
    return HistoryListResponse(
        items=[_history_item(r) for r in records],
        total=len(records)
    )


@router.post(
    "/history/{record_id}/load",
    response_model=RunStateResponse,
    status_code=201,
    tags=["History"],
    summary="Reopen a saved analysis in a new run",
    responses=ERROR_RESPONSES
)
async def load_history(record_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """Restore the saved analysis and its chat into a fresh run."""
    pipeline = registry.create()
    try:
        pipeline.load_from_history(record_id)
    except MediAnalystError:
        registry.remove(pipeline.run_id)
        raise
    return pipeline.snapshot()


@router.get(
    "/history/{record_id}/report",
    tags=["Reports"],
    summary="Download the report of a saved analysis",
    responses=ERROR_RESPONSES
)
async def download_history_report(record_id: str, registry: PipelineRegistry = Depends(get_pipeline_registry)):
    """Render a saved analysis; a timestamped copy is kept in the output directory."""
    record = registry.history.get(record_id)
    if record is None:
        raise RecordNotFoundError(f"History record not found: {record_id}")
    html = registry.report_generator.generate_for_record(record)
    registry.report_generator.save_html(html, record.product)
    return _html_download(report_filename(record.product), html)


# =============================================================================
# Image Editor
# =============================================================================

@router.post(
    "/edit-image",
    tags=["Images"],
    summary="Edit a product image with a text instruction",
    responses={
        200: {"content": {"image/png": {}}, "description": "Edited image"},
        **ERROR_RESPONSES
    }
)
@limiter.limit(GENERATION_LIMIT)
async def edit_image(
    request: Request,
    file: UploadFile = File(..., description="Source image"),
    instruction: str = Form(..., description="What to change, e.g. 移除背景中的杂物"),
    registry: PipelineRegistry = Depends(get_pipeline_registry)
):
    """
    Edit an uploaded image.

    Independent of the analysis wizard.
    """
    if not instruction.strip():
        raise InvalidRequestError("Instruction must not be empty")

    content = await file.read()
    mime_type = file_validator.validate_image(content, file.filename or "")

    try:
        edited = await registry.engine.edit_image(content, mime_type, instruction)
    except MediAnalystError:
        raise
    except Exception as e:
        logger.error("Image editing failed", filename=file.filename, error=str(e))
        raise ImageGenerationFailure(f"Image generation failed: {e}") from e

    logger.info("Image edited", filename=file.filename, size=len(edited))
    return Response(content=edited, media_type="image/png")
