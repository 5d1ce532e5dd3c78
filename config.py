"""Centralized configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Google Drive folder to watch and OAuth2 material
    drive_folder_id: str = ""
    google_client_secrets_path: Path = Path("credentials.json")
    google_token_path: Path = Path("token.json")
    oauth_redirect_uri: str = "http://localhost:3000/oauth2callback"

    # Persisted pipeline state
    cursor_path: Path = Path("state/cursor.json")
    staging_dir: Path = Path("state/staging")
    db_path: Path = Path("state/noteline.db")

    # Change scanning (comma-separated extensions, no dots)
    supported_extensions: str = "mp3,m4a,wav,ogg,webm,flac,mp4"
    max_file_size_mb: int = 300
    scan_page_size: int = 500
    initial_lookback_hours: int = 0

    # Speech-to-text (whisper.cpp CLI)
    whisper_cli_path: str = "whisper-cli"
    whisper_model_path: str = "models/ggml-base.en.bin"
    whisper_use_gpu: bool = True
    whisper_threads: int = 4
    whisper_timeout_seconds: int = 3600

    # Gemini API for summarization
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    llm_max_tokens: int = 4096
    llm_schema_constrained: bool = True

    # Notion publishing
    notion_api_key: str = ""
    notion_database_id: str = ""
    summary_tag: str = "AI Transcription"

    # Secret for external trigger (e.g. cron-job.org); empty disables the check
    trigger_secret: str = ""

    # Fallback poller interval; 0 disables it
    poll_interval_minutes: int = 0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def extensions(self) -> set[str]:
        return {
            e.strip().lower().lstrip(".")
            for e in self.supported_extensions.split(",")
            if e.strip()
        }

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


settings = Settings()
