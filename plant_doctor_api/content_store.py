import base64
import time
from collections.abc import Callable
from urllib.parse import quote

import httpx

from plant_doctor_api.config import Settings
from plant_doctor_api.errors import ContentStoreError
from plant_doctor_api.schemas import StoredImageReference


def now_millis() -> int:
    return time.time_ns() // 1_000_000


def build_filename(original_name: str | None, timestamp_ms: int) -> str:
    """Prefix the client's filename with the upload time in epoch milliseconds.

    Two uploads collide only if they share both the millisecond and the
    original name; nothing else guards against that.
    """
    return f"{timestamp_ms}-{original_name or 'image'}"


class GitHubContentStore:
    """Creates one file per upload through the GitHub repository contents API."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._clock = clock

    def target_path(self, filename: str) -> str:
        prefix = self._settings.github_path_prefix.strip("/")
        return f"{prefix}/{filename}" if prefix else filename

    async def put_image(self, content: bytes, original_name: str | None) -> StoredImageReference:
        if not self._settings.github_token or not self._settings.github_repo:
            raise ContentStoreError("GitHub configuration missing")

        filename = build_filename(original_name, self._clock())
        path = self.target_path(filename)
        url = (
            f"{self._settings.github_api_base_url.rstrip('/')}"
            f"/repos/{self._settings.github_repo}/contents/{quote(path)}"
        )
        headers = {
            "Authorization": f"token {self._settings.github_token}",
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
        }
        body = {
            "message": f"Upload plant image: {filename}",
            "content": base64.b64encode(content).decode("utf-8"),
            "branch": self._settings.github_branch,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.http_timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.put(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise ContentStoreError(f"Failed to upload to GitHub: {exc}") from exc

        if not response.is_success:
            raise ContentStoreError("Failed to upload to GitHub", status_code=response.status_code)

        download_url = _extract_download_url(response)
        if not download_url:
            raise ContentStoreError(
                "GitHub response did not include a download URL",
                status_code=response.status_code,
            )
        return StoredImageReference(filename=filename, path=path, download_url=download_url)


def _extract_download_url(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    content = data.get("content") or {}
    if not isinstance(content, dict):
        return None
    url = content.get("download_url")
    if isinstance(url, str) and url.strip():
        return url
    return None
