"""Client-side form controller for the diagnosis endpoint.

Mirrors the browser page in ``frontend/index.html``: one file is selected,
previewed, submitted, and either a result or an error is shown until the
user starts over.
"""

import base64
from dataclasses import dataclass
from enum import Enum

import httpx

from plant_doctor_api.schemas import AnalysisResponse

ANALYZE_PATH = "/api/analyze-plant"
ANALYZE_FAILED = "Failed to analyze image"


class FormState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    ANALYZING = "analyzing"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class SelectedFile:
    filename: str
    content: bytes
    mime_type: str


class SubmissionInProgress(RuntimeError):
    pass


class FormController:
    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._transport = transport
        self.state = FormState.IDLE
        self.selected_file: SelectedFile | None = None
        self.preview_url: str | None = None
        self.result: AnalysisResponse | None = None
        self.error: str | None = None

    @property
    def can_submit(self) -> bool:
        return self.selected_file is not None and self.state != FormState.ANALYZING

    def select_file(self, filename: str, content: bytes, mime_type: str) -> None:
        if self.state == FormState.ANALYZING:
            raise SubmissionInProgress("an analysis is already running")
        self.selected_file = SelectedFile(filename=filename, content=content, mime_type=mime_type)
        self.preview_url = f"data:{mime_type};base64,{base64.b64encode(content).decode('utf-8')}"
        self.result = None
        self.error = None
        self.state = FormState.FILE_SELECTED

    async def submit(self) -> FormState:
        if self.state == FormState.ANALYZING:
            raise SubmissionInProgress("an analysis is already running")
        if self.selected_file is None:
            return self.state

        self.state = FormState.ANALYZING
        self.error = None
        selected = self.selected_file
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                transport=self._transport,
                timeout=None,
            ) as client:
                response = await client.post(
                    ANALYZE_PATH,
                    files={"image": (selected.filename, selected.content, selected.mime_type)},
                )
            if not response.is_success:
                raise RuntimeError(ANALYZE_FAILED)
            try:
                self.result = AnalysisResponse.model_validate(response.json())
            except ValueError as exc:
                raise RuntimeError(ANALYZE_FAILED) from exc
            self.state = FormState.RESULT
        except Exception as exc:  # noqa: BLE001
            self.error = str(exc) or "An error occurred"
            self.state = FormState.ERROR
        return self.state

    def reset(self) -> None:
        if self.state == FormState.ANALYZING:
            raise SubmissionInProgress("cannot reset while an analysis is running")
        self.selected_file = None
        self.preview_url = None
        self.result = None
        self.error = None
        self.state = FormState.IDLE

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "selected_file": self.selected_file,
            "preview_url": self.preview_url,
            "result": self.result,
            "error": self.error,
        }
