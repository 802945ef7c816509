import json
import logging
import time
import uuid
from collections import Counter
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from plant_doctor_api.config import Settings
from plant_doctor_api.pipeline import PipelineEvent

# LogRecord attributes set by ``extra=`` that belong in the JSON line.
_CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "latency_ms",
    "event",
    "image_name",
    "image_url",
    "mime_type",
    "size",
    "error",
    "reason",
)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(
            (name, getattr(record, name))
            for name in _CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False)


def configure_logging(settings: Settings) -> None:
    """Attach one stream handler to the root logger unless one is already there."""
    root = logging.getLogger()
    if root.handlers:
        return
    formatter = (
        JsonLogFormatter()
        if settings.log_json
        else logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))


class PipelineMetrics:
    """Counts pipeline events per stage and outcome.

    Fed by the pipeline's event hook; ``upload.succeeded`` without a
    matching ``analysis.succeeded`` is an image left in the store.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._events: Counter[str] = Counter()
        self._bytes_received = 0

    def observe(self, event: PipelineEvent) -> None:
        with self._lock:
            self._events[event.name] += 1
            if event.name == "upload.started":
                self._bytes_received += int(event.detail.get("size") or 0)

    def count(self, name: str) -> int:
        with self._lock:
            return self._events[name]

    @property
    def orphaned_images(self) -> int:
        with self._lock:
            return self._events["upload.succeeded"] - self._events["analysis.succeeded"]

    def render_prometheus(self) -> str:
        orphaned = self.orphaned_images
        with self._lock:
            lines = ["# TYPE plant_doctor_pipeline_events_total counter"]
            for name in sorted(self._events):
                stage, outcome = name.split(".", 1)
                lines.append(
                    f'plant_doctor_pipeline_events_total{{stage="{stage}",outcome="{outcome}"}} '
                    f"{self._events[name]}"
                )
            lines += [
                "# TYPE plant_doctor_image_bytes_received_total counter",
                f"plant_doctor_image_bytes_received_total {self._bytes_received}",
                "# TYPE plant_doctor_orphaned_images gauge",
                f"plant_doctor_orphaned_images {orphaned}",
            ]
        return "\n".join(lines) + "\n"


_access_logger = logging.getLogger("plant_doctor.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ``x-request-id`` and writes one access log line."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}

        try:
            response = await call_next(request)
        except Exception:
            context["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
            _access_logger.exception("request_failed", extra=context)
            raise

        context["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
        context["status_code"] = response.status_code
        _access_logger.info("request_complete", extra=context)
        response.headers["x-request-id"] = request_id
        return response
