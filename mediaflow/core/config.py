from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILES = [REPO_ROOT / ".env", Path.cwd() / ".env"]

for env_path in ENV_FILES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, extra="allow", populate_by_name=True)

    app_name: str = Field(default="mediaflow", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")

    database_url: str = Field(default="sqlite:///./mediaflow.db", alias="DATABASE_URL")
    media_root: str = Field(default="media", alias="MEDIA_ROOT")

    ffmpeg_bin: str = Field(default="ffmpeg", alias="FFMPEG_BIN")
    ffprobe_bin: str = Field(default="ffprobe", alias="FFPROBE_BIN")

    # Speech to text: "stub" or "openai"; empty picks openai when a key is present
    speech_provider: str = Field(default="", alias="SPEECH_PROVIDER")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_whisper_model: str = Field(default="whisper-1", alias="OPENAI_WHISPER_MODEL")
    speech_chunk_seconds: float = Field(default=600.0, alias="SPEECH_CHUNK_SECONDS")

    # Queue workers
    queue_transcode_concurrency: int = Field(default=1, alias="QUEUE_TRANSCODE_CONCURRENCY")
    queue_subtitle_concurrency: int = Field(default=1, alias="QUEUE_SUBTITLE_CONCURRENCY")
    queue_metadata_concurrency: int = Field(default=2, alias="QUEUE_METADATA_CONCURRENCY")
    queue_thumbnail_concurrency: int = Field(default=2, alias="QUEUE_THUMBNAIL_CONCURRENCY")
    queue_poll_interval_seconds: float = Field(default=1.0, alias="QUEUE_POLL_INTERVAL_SECONDS")
    job_backoff_scale: float = Field(default=1.0, alias="JOB_BACKOFF_SCALE")
    # Seconds without progress before start-up recovery takes back a processing job
    job_stall_timeout_seconds: float = Field(default=0.0, alias="JOB_STALL_TIMEOUT_SECONDS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    worker_prometheus_port: Optional[int] = Field(default=None, alias="WORKER_PROMETHEUS_PORT")
    worker_prometheus_host: str = Field(default="0.0.0.0", alias="WORKER_PROMETHEUS_HOST")

    @property
    def media_root_path(self) -> Path:
        return Path(self.media_root)

    @property
    def resolved_speech_provider(self) -> str:
        if self.speech_provider:
            return self.speech_provider.strip().lower()
        return "openai" if self.openai_api_key else "stub"

    def queue_concurrency(self, queue_name: str) -> int:
        return max(1, int(getattr(self, f"queue_{queue_name}_concurrency", 1)))


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    if settings.resolved_speech_provider == "openai" and not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is required when SPEECH_PROVIDER=openai")
    return settings
