from __future__ import annotations

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings
import os


def _data_home() -> Path:
    return Path(os.getenv("XDG_DATA_HOME") or Path.home() / ".local" / "share")


class Settings(BaseSettings):
    app_name: str = "Debate Stream"

    # Base data dir (e.g., ~/.local/share/DebateStream); override with DS_APPDATA_DIR
    appdata_dir: Path = Field(default_factory=lambda: _data_home() / "DebateStream")
    data_dir: Path = Field(default_factory=lambda: _data_home() / "DebateStream" / "data")
    logs_dir: Path = Field(default_factory=lambda: _data_home() / "DebateStream" / "logs")

    # Any SQLAlchemy URL; None -> SQLite file under data_dir
    database_url: Optional[str] = None

    # Generative service (Gemini generateContent)
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash-exp"
    gemini_endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_timeout_sec: float = 60.0
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 3000

    # Host recognizer
    recognizer_locale: str = "en-US"
    default_confidence: float = 0.9

    # Auto-restart: delay = base + step * attempt, at most max attempts
    restart_base_delay_sec: float = 1.0
    restart_delay_step_sec: float = 0.5
    max_restart_attempts: int = 10

    # Summary shaping
    low_confidence_threshold: float = 0.8
    fallback_top_contributions: int = 5
    key_points_count: int = 10
    key_point_min_length: int = 4  # words must be longer than this
    side_arguments_count: int = 10

    caption_writer_threads: int = 4

    class Config:
        env_prefix = "DS_"
        case_sensitive = False

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.data_dir / 'debatestream.db'}"

    def ensure_dirs(self) -> None:
        for d in [self.appdata_dir, self.data_dir, self.logs_dir]:
            d.mkdir(parents=True, exist_ok=True)
