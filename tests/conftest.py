import os

import pytest

# Keep tests deterministic and offline-safe.
os.environ["GITHUB_TOKEN"] = ""
os.environ["GITHUB_REPO"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["USE_LANGCHAIN"] = "false"
os.environ["LOG_JSON"] = "false"

from plant_doctor_api.config import Settings  # noqa: E402
from plant_doctor_api.errors import ContentStoreError, InferenceError  # noqa: E402
from plant_doctor_api.schemas import StoredImageReference  # noqa: E402

LEAF_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-leaf"


class FakeStore:
    def __init__(self, calls: list[str], fail: bool = False) -> None:
        self.calls = calls
        self.fail = fail
        self.objects: dict[str, bytes] = {}

    async def put_image(self, content: bytes, original_name: str | None) -> StoredImageReference:
        self.calls.append("store")
        if self.fail:
            raise ContentStoreError("Failed to upload to GitHub", status_code=422)
        filename = f"1700000000000-{original_name}"
        self.objects[filename] = content
        return StoredImageReference(
            filename=filename,
            path=f"plant-images/{filename}",
            download_url=f"https://raw.githubusercontent.com/acme/leaves/main/plant-images/{filename}",
        )


class FakeAnalyzer:
    def __init__(self, calls: list[str], fail: bool = False, text: str = "## Disease Identification\n- Leaf rust") -> None:
        self.calls = calls
        self.fail = fail
        self.text = text
        self.received: list[tuple[bytes, str]] = []

    async def analyze(self, content: bytes, mime_type: str) -> str:
        self.calls.append("analyze")
        self.received.append((content, mime_type))
        if self.fail:
            raise InferenceError("provider unavailable")
        return self.text


@pytest.fixture
def settings() -> Settings:
    return Settings(
        github_token="ghp_test",
        github_repo="acme/leaves",
        llm_api_key="sk-test",
        use_langchain=False,
        log_json=False,
    )


@pytest.fixture
def calls() -> list[str]:
    return []


@pytest.fixture
def fake_store(calls) -> FakeStore:
    return FakeStore(calls)


@pytest.fixture
def fake_analyzer(calls) -> FakeAnalyzer:
    return FakeAnalyzer(calls)
