"""
Configuration management for MediAnalyst.

Uses Pydantic Settings for type-safe environment variable handling.
All configuration is loaded from environment variables or .env file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "MediAnalyst AI"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # Server
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000
    # Comma-separated origins allowed to call the API from a browser
    cors_origins: str = "*"

    # ==========================================================================
    # Generative AI (Gemini)
    # ==========================================================================
    gemini_api_key: str = ""
    search_model: str = "gemini-2.5-flash"
    analysis_model: str = "gemini-3-pro-preview"
    chat_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image"

    # Characters of ingredient-analysis JSON embedded in the pharmacology prompt
    ingredient_context_limit: int = 10000

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_per_minute: int = 30
    rate_limit_per_hour: int = 200

    # ==========================================================================
    # Image Upload
    # ==========================================================================
    max_file_size_mb: int = 10
    allowed_image_extensions: str = ".png,.jpg,.jpeg,.webp"

    # ==========================================================================
    # History & Output
    # ==========================================================================
    data_dir: str = "data"
    history_key: str = "medi_analyst_history"
    history_limit: int = 20
    output_dir: str = "outputs"

    # Oldest idle runs are dropped beyond this many
    max_active_runs: int = 100

    # ==========================================================================
    # Report Rendering
    # ==========================================================================
    marked_script_url: str = "https://cdn.jsdelivr.net/npm/marked/marked.min.js"
    mermaid_script_url: str = "https://cdn.jsdelivr.net/npm/mermaid/dist/mermaid.min.js"

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def max_file_size_bytes(self) -> int:
        """Maximum file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def image_extensions(self) -> list[str]:
        """List of allowed image extensions."""
        return [ext.strip() for ext in self.allowed_image_extensions.split(",")]

    @property
    def allowed_origins(self) -> list[str]:
        """List of CORS origins."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def history_path(self) -> Path:
        """JSON file holding the saved analyses."""
        path = Path(self.data_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path / f"{self.history_key}.json"

    @property
    def output_path(self) -> Path:
        """Path to output directory."""
        path = Path(self.output_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience access
settings = get_settings()
