import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from langchain_core.runnables import RunnableLambda

from plant_doctor_api.errors import PlantDoctorError
from plant_doctor_api.schemas import StoredImageReference, UploadRequest

_pipeline_logger = logging.getLogger("plant_doctor.pipeline")


class ImageStore(Protocol):
    async def put_image(self, content: bytes, original_name: str | None) -> StoredImageReference: ...


class ImageAnalyzer(Protocol):
    async def analyze(self, content: bytes, mime_type: str) -> str: ...


@dataclass(frozen=True)
class PipelineEvent:
    name: str
    filename: str
    detail: dict[str, Any] = field(default_factory=dict)


EventHook = Callable[[PipelineEvent], None]


def log_event(event: PipelineEvent) -> None:
    extra = {"event": event.name, "image_name": event.filename, **event.detail}
    if event.name.endswith(".failed"):
        _pipeline_logger.warning(event.name, extra=extra)
    else:
        _pipeline_logger.info(event.name, extra=extra)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class PipelineOutcome:
    stored: StoredImageReference | None = None
    analysis: str | None = None
    error: str | None = None
    failed_stage: str | None = None
    completed_at: str | None = None

    @property
    def ok(self) -> bool:
        return self.stored is not None and self.analysis is not None and self.error is None


class AnalysisPipeline:
    """Store the image, then analyze it.

    The analyze step runs only when the upload step produced a
    :class:`StoredImageReference`. A failed analysis does not remove the
    stored object.
    """

    def __init__(
        self,
        store: ImageStore,
        analyzer: ImageAnalyzer,
        on_event: EventHook = log_event,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self._store = store
        self._analyzer = analyzer
        self._on_event = on_event
        self._clock = clock
        self._chain = RunnableLambda(self._upload_step) | RunnableLambda(self._analyze_step)

    async def run(self, upload: UploadRequest) -> PipelineOutcome:
        state: dict[str, Any] = {"upload": upload, "outcome": PipelineOutcome()}
        final_state = await self._chain.ainvoke(state)
        outcome: PipelineOutcome = final_state["outcome"]
        if outcome.ok:
            outcome.completed_at = self._clock()
        return outcome

    async def _upload_step(self, state: dict[str, Any]) -> dict[str, Any]:
        upload: UploadRequest = state["upload"]
        outcome: PipelineOutcome = state["outcome"]

        self._emit("upload.started", upload.filename, size=len(upload.content))
        try:
            outcome.stored = await self._store.put_image(upload.content, upload.filename)
        except PlantDoctorError as exc:
            outcome.error = str(exc)
            outcome.failed_stage = "upload"
            self._emit(
                "upload.failed",
                upload.filename,
                error=str(exc),
                status_code=getattr(exc, "status_code", None),
            )
            return state

        self._emit("upload.succeeded", outcome.stored.filename, image_url=outcome.stored.download_url)
        return state

    async def _analyze_step(self, state: dict[str, Any]) -> dict[str, Any]:
        upload: UploadRequest = state["upload"]
        outcome: PipelineOutcome = state["outcome"]

        if outcome.stored is None:
            self._emit("analysis.skipped", upload.filename, reason="upload_failed")
            return state

        filename = outcome.stored.filename
        self._emit("analysis.started", filename, mime_type=upload.mime_type)
        try:
            outcome.analysis = await self._analyzer.analyze(upload.content, upload.mime_type)
        except PlantDoctorError as exc:
            outcome.error = str(exc)
            outcome.failed_stage = "analysis"
            self._emit("analysis.failed", filename, error=str(exc), image_url=outcome.stored.download_url)
            return state

        self._emit("analysis.succeeded", filename, image_url=outcome.stored.download_url)
        return state

    def _emit(self, name: str, filename: str, **detail: Any) -> None:
        self._on_event(PipelineEvent(name=name, filename=filename, detail=detail))
