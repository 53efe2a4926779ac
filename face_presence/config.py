from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
STATE_DIR = BASE_DIR / "state"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRESENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "FacePresence"
    log_level: str = "INFO"
    log_dir: Path = BASE_DIR / "logs"

    # Webcam settings
    camera_index: int = 0
    frame_width: int = 1280
    frame_height: int = 720

    # Detection loop and status timing
    poll_interval_seconds: float = Field(default=1.0, ge=0.5, le=1.0)
    dwell_seconds: float = Field(default=3.0, gt=0.0)
    trigger_policy: Literal["auto", "manual"] = "auto"

    # Verification service
    verify_url: str = ""
    verify_api_key: str = ""
    request_timeout_seconds: float = 8.0
    default_confidence: float = Field(default=0.85, ge=0.0, le=1.0)

    # Still image capture
    upload_images: bool = True
    jpeg_quality: int = Field(default=85, ge=1, le=100)

    # Supabase persistence and object storage
    supabase_url: str = ""
    supabase_service_key: str = ""
    supabase_schema: str = "public"
    attendance_table: str = "attendance_records"
    storage_bucket: str = "attendance-images"

    local_db_path: Path = STATE_DIR / "attendance.db"
    identity_path: Path = STATE_DIR / "identity.json"

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url.strip()) and bool(self.supabase_service_key.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
