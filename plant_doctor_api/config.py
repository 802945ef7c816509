import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

REQUIRED_ENV_VARS = ("GITHUB_TOKEN", "GITHUB_REPO", "OPENAI_API_KEY")


def _env(name: str, default: str = ""):
    return field(default_factory=lambda: os.getenv(name, default))


def _env_flag(name: str, default: str):
    return field(default_factory=lambda: os.getenv(name, default).lower() == "true")


def _env_timeout():
    def _read() -> float | None:
        raw = os.getenv("HTTP_TIMEOUT_S", "").strip()
        return float(raw) if raw else None

    return field(default_factory=_read)


@dataclass(frozen=True)
class Settings:
    github_token: str = _env("GITHUB_TOKEN")
    github_repo: str = _env("GITHUB_REPO")
    github_branch: str = _env("GITHUB_BRANCH", "main")
    github_path_prefix: str = _env("GITHUB_PATH_PREFIX", "plant-images")
    github_api_base_url: str = _env("GITHUB_API_BASE_URL", "https://api.github.com")
    llm_api_key: str = _env("OPENAI_API_KEY")
    llm_model: str = _env("LLM_MODEL", "gpt-4o")
    llm_base_url: str = _env("LLM_BASE_URL", "https://api.openai.com/v1")
    use_langchain: bool = _env_flag("USE_LANGCHAIN", "true")
    # None disables the local timeout; the providers' own limits apply.
    http_timeout_s: float | None = _env_timeout()
    log_level: str = _env("LOG_LEVEL", "INFO")
    log_json: bool = _env_flag("LOG_JSON", "true")
    enable_metrics: bool = _env_flag("ENABLE_METRICS", "true")

    def required_values(self) -> dict[str, str]:
        return {
            "GITHUB_TOKEN": self.github_token,
            "GITHUB_REPO": self.github_repo,
            "OPENAI_API_KEY": self.llm_api_key,
        }


def missing_required_settings(settings: Settings) -> list[str]:
    values = settings.required_values()
    return [name for name in REQUIRED_ENV_VARS if not values.get(name, "").strip()]
