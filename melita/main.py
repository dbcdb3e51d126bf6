"""
FastAPI application for Melita.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from melita import __version__
from melita.config import settings, logger
from melita.connectivity import connectivity_monitor
from melita.diagram import diagram_renderer
from melita.exceptions import InvalidUploadError, MelitaError
from melita.gemini_provider import gemini_provider
from melita.models import (
    AnalysisState,
    AnalyzeRequest,
    AnalyzeResponse,
    ErrorResponse,
    ExtractResponse,
    HistoryItem,
    RenderRequest,
    RenderResponse,
    ZoomRequest,
)
from melita.orchestrator import AnalysisOrchestrator


orchestrator = AnalysisOrchestrator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    logger.info("Melita v%s starting", __version__)
    logger.info("Model: %s", settings.GEMINI_MODEL)
    logger.info("Analysis timeout: %gs", settings.ANALYSIS_TIMEOUT_SECONDS)

    if not gemini_provider.is_available():
        logger.error("Gemini provider not available - check GEMINI_API_KEY")
    else:
        logger.info("Gemini provider ready")

    connectivity_monitor.start()

    yield

    logger.info("Shutting down")
    orchestrator.stop()
    await connectivity_monitor.stop()


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------


analysis_router = APIRouter()


@analysis_router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    responses={
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def analyze_code(request: AnalyzeRequest):
    """
    Analyze code and return a flowchart with complexity estimates.

    Starting an analysis cancels any analysis still in flight.
    """
    result = await orchestrator.analyze(request.code)
    return AnalyzeResponse(success=True, result=result, model=gemini_provider.model_name)


@analysis_router.post("/stop")
async def stop_analysis():
    orchestrator.stop()
    return {"success": True, "state": orchestrator.state}


@analysis_router.get("/state", response_model=AnalysisState)
async def get_state():
    return orchestrator.state


@analysis_router.get("/history", response_model=list[HistoryItem])
async def get_history():
    return orchestrator.history


@analysis_router.post(
    "/extract",
    response_model=ExtractResponse,
    responses={400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def extract_code(file: UploadFile = File(...)):
    """Read source code out of an uploaded screenshot."""
    if not (file.content_type or "").startswith("image/"):
        raise InvalidUploadError("Upload must be an image")
    if file.size is not None and file.size > settings.MAX_IMAGE_BYTES:
        raise InvalidUploadError("Image too large", status_code=413)

    image = await file.read(settings.MAX_IMAGE_BYTES + 1)
    if not image:
        raise InvalidUploadError("Empty upload")
    if len(image) > settings.MAX_IMAGE_BYTES:
        raise InvalidUploadError("Image too large", status_code=413)

    code = await gemini_provider.extract_code(image, file.content_type)
    return ExtractResponse(success=True, code=code)


diagram_router = APIRouter()


def _render_response(view) -> RenderResponse:
    if view.error or view.drawing is None:
        return RenderResponse(success=False, error=view.error, zoom=view.zoom)
    return RenderResponse(
        success=True,
        svg=view.drawing.svg,
        width=view.drawing.width,
        height=view.drawing.height,
        zoom=view.zoom,
    )


@diagram_router.post("/render", response_model=RenderResponse)
async def render_diagram(request: RenderRequest):
    """Render Mermaid source to SVG. Failures come back as an inline error."""
    view = await diagram_renderer.render(request.diagram)
    return _render_response(view)


@diagram_router.post("/zoom")
async def zoom(request: ZoomRequest):
    if request.action == "in":
        level = diagram_renderer.zoom_in()
    elif request.action == "out":
        level = diagram_renderer.zoom_out()
    else:
        level = diagram_renderer.reset_zoom()
    return {"success": True, "zoom": level}


@diagram_router.post("/export")
async def export_diagram():
    """Download the current drawing as PNG, or SVG if rasterization is blocked."""
    exported = diagram_renderer.export_raster()
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


# ---------------------------------------------------------------------------
# FastAPI app assembly
# ---------------------------------------------------------------------------


app = FastAPI(
    title="Melita API",
    description="Code-to-flowchart analysis using Gemini",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


@app.exception_handler(MelitaError)
async def melita_exception_handler(request: Request, exc: MelitaError):
    logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.message, category=exc.category).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    error_details = [
        {"field": err.get("loc", [])[-1] if err.get("loc") else "unknown", "type": err.get("type")}
        for err in exc.errors()[:5]
    ]
    logger.warning("Validation error on %s %s: %s", request.method, request.url.path, error_details)
    return JSONResponse(status_code=422, content={"success": False, "error": "Invalid request format"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # Request bodies carry user code; log only the exception summary.
    logger.error(
        "Unhandled exception on %s %s: %s: %s",
        request.method,
        request.url.path,
        type(exc).__name__,
        str(exc)[:200],
    )
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


cors_origins = settings.cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials="*" not in cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Melita API",
        "version": __version__,
        "model": gemini_provider.model_name,
        "status": "ok" if gemini_provider.is_available() else "unavailable",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    status = "ok"
    issues = []

    if not gemini_provider.is_available():
        status = "degraded"
        issues.append("gemini_unavailable")
    if not connectivity_monitor.online:
        status = "degraded"
        issues.append("offline")

    response = {
        "status": status,
        "version": __version__,
        "model": gemini_provider.model_name,
        "online": connectivity_monitor.online,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if issues:
        response["issues"] = issues
    return response


app.include_router(analysis_router, prefix="/api/v1", tags=["analysis"])
app.include_router(diagram_router, prefix="/api/v1", tags=["diagram"])
