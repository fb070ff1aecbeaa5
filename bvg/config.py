"""Settings for the generator, read from the environment (.env) with defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # bvg/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Data directory: JSON stores live here when no database is configured
    bvg_data_dir: str = "./data"

    # Postgres URL for job, batch and credit stores
    bvg_database_url: str | None = None

    # Scene planner LLM: openai | anthropic
    bvg_llm_provider: str = "openai"
    openai_api_key: str | None = None
    bvg_openai_model: str = "gpt-4o"
    anthropic_api_key: str | None = None
    bvg_anthropic_model: str = "claude-3-5-sonnet-20241022"

    # Render provider (Kie.ai Veo API)
    kie_api_key: str | None = None
    kie_base_url: str = "https://api.kie.ai"
    default_model: str = "veo3_fast"

    # Public base URL of this service; the provider posts completions to
    # {bvg_callback_base_url}/api/callbacks/render
    bvg_callback_base_url: str = "http://localhost:8000"

    # Media host used for stitching
    cloudinary_cloud_name: str | None = None
    cloudinary_api_key: str | None = None
    cloudinary_api_secret: str | None = None

    # Billing
    credits_per_minute: float = 7.5
    initial_segment_seconds: int = 8
    extension_segment_seconds: int = 6

    # Outbound pacing between provider calls (seconds)
    creation_delay_seconds: float = 0.3
    submission_delay_seconds: float = 2.0
    retry_delay_seconds: float = 1.5

    # Jobs generating longer than this are failed by the sweep
    render_timeout_minutes: int = 30

    # Follow-up work triggered by render callbacks
    auto_extend: bool = True
    auto_stitch: bool = True
    stitch_trim_seconds: float | None = None

    # HMAC-SHA256 secret for the payment webhook (unset = no check)
    payment_webhook_secret: str | None = None

    # CORS origins (comma-separated). Defaults to localhost dev.
    cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_origin_regex: str | None = None

    # Server port (hosting platforms inject PORT)
    port: int = 8000

    @property
    def data_dir(self) -> Path:
        """Get data directory as Path.

        Relative paths are resolved against the project root (not CWD),
        so the backend works whether started from project root or backend/.
        """
        p = Path(self.bvg_data_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    @property
    def callback_url(self) -> str:
        return f"{self.bvg_callback_base_url.rstrip('/')}/api/callbacks/render"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def ensure_dirs(self) -> None:
        """Create the data root plus the jobs and credits subdirectories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "jobs").mkdir(parents=True, exist_ok=True)
        (self.data_dir / "credits").mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
