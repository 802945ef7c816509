import base64
from typing import Any

import httpx
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from plant_doctor_api.config import Settings
from plant_doctor_api.errors import InferenceError

DIAGNOSIS_PROMPT = """Analyze this plant leaf image for diseases. Please provide a comprehensive analysis including:

1. **Disease Identification**: What disease(s) do you see, if any?
2. **Confidence Level**: How confident are you in this diagnosis?
3. **Severity Assessment**: How severe is the condition?
4. **Symptoms Description**: What specific symptoms are visible?
5. **Treatment Recommendations**: What should be done to treat this condition?
6. **Prevention Tips**: How to prevent this disease in the future?

If the plant appears healthy, please indicate that and provide general care tips. Format your response in a clear, readable manner with proper headings and bullet points where appropriate."""


def build_data_uri(content: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(content).decode('utf-8')}"


def build_message_content(content: bytes, mime_type: str) -> list[dict[str, Any]]:
    return [
        {"type": "text", "text": DIAGNOSIS_PROMPT},
        {"type": "image_url", "image_url": {"url": build_data_uri(content, mime_type)}},
    ]


class LeafDiseaseAnalyzer:
    """Sends the diagnosis prompt plus the leaf image to the inference provider.

    The transport is fixed per instance: LangChain's ``ChatOpenAI`` when
    ``settings.use_langchain`` is set, otherwise a direct call to the
    OpenAI-compatible ``/chat/completions`` endpoint. A failure on either
    path raises :class:`InferenceError`; the other path is never tried.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport

    def enabled(self) -> bool:
        return bool(self._settings.llm_api_key and self._settings.llm_model)

    async def analyze(self, content: bytes, mime_type: str) -> str:
        """Return the model's reply verbatim, empty or not."""
        if not self.enabled():
            raise InferenceError("LLM configuration missing")

        message_content = build_message_content(content, mime_type)
        try:
            if self._settings.use_langchain:
                return await self._analyze_with_langchain(message_content)
            return await self._analyze_with_http(message_content)
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"inference request failed: {exc}") from exc

    async def _analyze_with_langchain(self, message_content: list[dict[str, Any]]) -> str:
        model = _build_chat_model(self._settings)
        response = await model.ainvoke([HumanMessage(content=message_content)])
        return _diagnosis_text(response)

    async def _analyze_with_http(self, message_content: list[dict[str, Any]]) -> str:
        headers = {
            "Authorization": f"Bearer {self._settings.llm_api_key}",
            "Content-Type": "application/json",
        }
        chat_body = {
            "model": self._settings.llm_model,
            "messages": [{"role": "user", "content": message_content}],
        }
        chat_url = f"{self._settings.llm_base_url.rstrip('/')}/chat/completions"
        async with httpx.AsyncClient(
            timeout=self._settings.http_timeout_s,
            transport=self._transport,
        ) as client:
            response = await client.post(chat_url, headers=headers, json=chat_body)
            response.raise_for_status()
            return _completion_text(response.json())


def _build_chat_model(settings: Settings) -> ChatOpenAI:
    return ChatOpenAI(
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        timeout=settings.http_timeout_s,
        max_retries=0,
    )


def _diagnosis_text(reply: Any) -> str:
    content = getattr(reply, "content", "")
    if isinstance(content, str):
        return content
    # Multimodal replies come back as content parts; keep only the text ones.
    return "".join(
        part if isinstance(part, str) else str(part.get("text", ""))
        for part in content
        if isinstance(part, str) or (isinstance(part, dict) and part.get("type") == "text")
    )


def _completion_text(data: Any) -> str:
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise InferenceError("chat completion reply carried no message") from exc
    return message.get("content") or ""
