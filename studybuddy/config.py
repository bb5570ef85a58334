"""Configuration management"""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Matching
    match_threshold: float = 1.5          # a best match must score strictly above this

    # Conversation gate
    message_cap: int = 2                  # messages allowed before the partner replies

    # Storage
    use_sqlite: bool = False
    sqlite_path: str = "./studybuddy.db"

    # Sessions
    session_timeout_seconds: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Logging
    log_level: str = "INFO"

    # Project paths
    project_root: Path = Path(__file__).parent.parent

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance
settings = Settings()
