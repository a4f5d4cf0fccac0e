# digpaper/config.py
from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Uploads / file store
    upload_dir: str = "./uploads"
    max_upload_size: int = 100 * 1024 * 1024
    upload_chunk_size: int = 64 * 1024
    # Content-Length allowance for the multipart envelope and form fields
    upload_form_overhead: int = 64 * 1024
    reject_unknown_types: bool = False  # unknown types are stored as "other" unless set
    fsync_uploads: bool = True
    stored_name_attempts: int = 5

    # CORS (comma-separated in env)
    cors_origins: str = "*"

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"

    # DB
    database_url: str = "sqlite+aiosqlite:///./digpaper.db"

    # Prometheus
    prometheus_enabled: bool = True

    # Pydantic v2 config
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ---- field validators (pydantic v2 style) ----
    @field_validator("max_upload_size", "upload_chunk_size", "stored_name_attempts", mode="before")
    def _positive_int(cls, v):
        """
        Accepts the env value as string or int and ensures it's a positive int.
        """
        if isinstance(v, str) and v.strip().isdigit():
            v = int(v.strip())
        if not isinstance(v, int) or v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("log_level", mode="before")
    def _normalize_log_level(cls, v):
        if v is None:
            return "info"
        return str(v).strip().lower()

    @property
    def cors_origin_list(self) -> List[str]:
        return [s.strip() for s in self.cors_origins.split(",") if s.strip()]


class ClientSettings(BaseSettings):
    """Settings for the field client (queue + sync engine)."""

    server_url: str = "http://localhost:8000"
    queue_url: str = "sqlite+aiosqlite:///./digpaper-queue.db"
    # uplinks in the field are slow; one request may legitimately take minutes
    request_timeout: float = 120.0
    poll_interval: float = 60.0
    author_name: Optional[str] = None
    evict_rejected: bool = True

    model_config = {
        "env_prefix": "DIGPAPER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("server_url", mode="before")
    def _strip_trailing_slash(cls, v):
        if isinstance(v, str):
            return v.rstrip("/")
        return v


settings = Settings()


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
