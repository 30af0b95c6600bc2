from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"


@dataclass(slots=True, frozen=True)
class LLMCredentials:
    api_key: str
    base_url: str = "https://api.x.ai/v1"
    model: str = "grok-4-fast-reasoning"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    # console logs instead of JSON
    DEBUG: bool = False
    LOG_JSON: bool = False
    ENVIRONMENT: str = "development"

    # persistence directory (defaults to ~/.chs-spots-data)
    DATA_DIR: Path | None = None
    DATABASE_URL: str | None = None

    # root that "/photos/..." style photo urls resolve against
    PUBLIC_DIR: Path = REPO_ROOT / "public"

    # LLM review
    GROK_API_KEY: str | None = Field(
        default=None, validation_alias=AliasChoices("GROK_API_KEY", "XAI_API_KEY")
    )
    LLM_API_BASE: str = "https://api.x.ai/v1"
    LLM_CHAT_MODEL: str = "grok-4-fast-reasoning"
    LLM_TEMPERATURE: float = 0.1
    LLM_REVIEW_TIMEOUT_SECONDS: float = 60.0
    LLM_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Advisory lock shared by scheduled runs
    PIPELINE_LOCK_PATH: Path | None = None
    PIPELINE_LOCK_STALE_SECONDS: int = 1800

    @property
    def data_dir(self) -> Path:
        # An empty DATA_DIR in `.env` parses as Path('.'); treat blank values as unset.
        def _materialize(path: Path) -> Path:
            path.mkdir(parents=True, exist_ok=True)
            return path

        raw_env = os.getenv("DATA_DIR")
        if raw_env is not None:
            trimmed = raw_env.strip()
            if trimmed:
                return _materialize(Path(trimmed).expanduser().resolve())
            return _materialize(Path.home() / ".chs-spots-data")

        if self.DATA_DIR is not None:
            candidate = Path(self.DATA_DIR).expanduser()
            candidate_str = str(candidate).strip()
            if candidate_str and candidate_str not in {".", "./", ".\\"}:
                return _materialize(candidate.resolve())
        return _materialize(Path.home() / ".chs-spots-data")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        default_path = self.data_dir / "chs-spots.db"
        return f"sqlite:///{default_path}"

    @property
    def async_database_url(self) -> str:
        return to_async_url(self.database_url)

    @property
    def pipeline_lock_path(self) -> Path:
        if self.PIPELINE_LOCK_PATH is not None:
            return Path(self.PIPELINE_LOCK_PATH).expanduser()
        return self.data_dir / ".ops" / "pipeline.lock"

    def llm_credentials(self) -> LLMCredentials | None:
        key = (self.GROK_API_KEY or "").strip()
        if not key:
            return None
        base_url = self.LLM_API_BASE.rstrip("/") or "https://api.x.ai/v1"
        return LLMCredentials(api_key=key, base_url=base_url, model=self.LLM_CHAT_MODEL)


def to_async_url(url: str) -> str:
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


settings = Settings()
