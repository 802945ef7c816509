import logging
import mimetypes
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from starlette.datastructures import UploadFile

from plant_doctor_api.config import Settings, missing_required_settings
from plant_doctor_api.content_store import GitHubContentStore
from plant_doctor_api.llm import LeafDiseaseAnalyzer
from plant_doctor_api.observability import PipelineMetrics, RequestContextMiddleware, configure_logging
from plant_doctor_api.pipeline import (
    AnalysisPipeline,
    EventHook,
    ImageAnalyzer,
    ImageStore,
    PipelineEvent,
    log_event,
)
from plant_doctor_api.schemas import AnalysisResponse, ConfigStatus, ErrorResponse, UploadRequest

ROOT_DIR = Path(__file__).resolve().parent.parent
FRONTEND_DIR = ROOT_DIR / "frontend"

IMAGE_FIELD = "image"
NO_IMAGE_ERROR = "No image provided"
PROCESSING_ERROR = "Failed to process image"

logger = logging.getLogger("plant_doctor.api")


def sniff_mime_type(filename: str | None, declared: str | None) -> str:
    if declared:
        return declared
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def create_app(
    settings: Settings | None = None,
    store: ImageStore | None = None,
    analyzer: ImageAnalyzer | None = None,
    on_event: EventHook = log_event,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings)
    metrics = PipelineMetrics()

    def _on_event(event: PipelineEvent) -> None:
        if settings.enable_metrics:
            metrics.observe(event)
        on_event(event)

    pipeline = AnalysisPipeline(
        store=store or GitHubContentStore(settings),
        analyzer=analyzer or LeafDiseaseAnalyzer(settings),
        on_event=_on_event,
    )

    app = FastAPI(title="Plant Doctor API", version="0.1.0")
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.metrics = metrics
    app.add_middleware(RequestContextMiddleware)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    def metrics_page() -> PlainTextResponse:
        return PlainTextResponse(metrics.render_prometheus())

    @app.get("/", include_in_schema=False)
    def index_page():
        index = FRONTEND_DIR / "index.html"
        if not index.is_file():
            return JSONResponse(status_code=404, content={"detail": "frontend not found"})
        return FileResponse(index)

    @app.get("/api/config")
    def config_check() -> JSONResponse:
        missing = missing_required_settings(settings)
        if missing:
            status = ConfigStatus(
                configured=False,
                missing=missing,
                message="Please configure the missing environment variables",
            )
            return JSONResponse(status_code=400, content=status.model_dump())
        status = ConfigStatus(configured=True, message="All environment variables are configured")
        return JSONResponse(content=status.model_dump(exclude_none=True))

    @app.post("/api/analyze-plant")
    async def analyze_plant(request: Request) -> JSONResponse:
        # Only 400 or 500 leave this route for a bad form; never a 422 body.
        try:
            form = await request.form()
        except Exception:  # noqa: BLE001
            logger.exception("Error reading upload form")
            return _processing_failed()

        image = form.get(IMAGE_FIELD)
        if image is None or image == "":
            return JSONResponse(status_code=400, content=ErrorResponse(error=NO_IMAGE_ERROR).model_dump())
        if not isinstance(image, UploadFile):
            logger.error("Error processing image", extra={"reason": "image field is not a file"})
            return _processing_failed()

        try:
            content = await image.read()
            upload = UploadRequest(
                content=content,
                filename=image.filename or "image",
                mime_type=sniff_mime_type(image.filename, image.content_type),
            )
            outcome = await pipeline.run(upload)
        except Exception:  # noqa: BLE001
            logger.exception("Error processing image")
            return _processing_failed()
        finally:
            await form.close()

        if not outcome.ok:
            logger.error(
                "Error processing image",
                extra={"event": f"{outcome.failed_stage}.failed", "error": outcome.error},
            )
            return _processing_failed()

        body = AnalysisResponse(
            analysis=outcome.analysis,
            image_url=outcome.stored.download_url,
            uploaded_at=outcome.completed_at,
        )
        return JSONResponse(content=body.model_dump(by_alias=True))

    return app


def _processing_failed() -> JSONResponse:
    return JSONResponse(status_code=500, content=ErrorResponse(error=PROCESSING_ERROR).model_dump())


app = create_app()
