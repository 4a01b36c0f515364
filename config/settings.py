"""
Identity Reconciliation Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage (use IDENTITY_ prefix)
    data_path: Path = Field(
        default=Path("./data"),
        alias="IDENTITY_DATA_PATH",
        description="Directory holding contacts.db"
    )
    store_backend: str = Field(
        default="sqlite",
        alias="IDENTITY_STORE_BACKEND",
        description="Contact store implementation: 'sqlite' or 'memory'"
    )
    sqlite_timeout: float = Field(
        default=10.0,
        alias="IDENTITY_SQLITE_TIMEOUT",
        description="Seconds to wait on a locked database before failing"
    )

    # Server
    port: int = Field(default=8000, alias="IDENTITY_PORT")
    host: str = Field(default="0.0.0.0", alias="IDENTITY_HOST")

    # Logging
    log_level: str = Field(default="INFO", alias="IDENTITY_LOG_LEVEL")

    # Normalization
    # Email matching is exact-string, so case folding happens before lookup
    lowercase_emails: bool = Field(
        default=True,
        alias="IDENTITY_LOWERCASE_EMAILS",
        description="Lowercase submitted emails before matching"
    )

    @property
    def contact_db_path(self) -> Path:
        """Get path to the contacts SQLite database."""
        return self.data_path / "contacts.db"

    @property
    def uses_memory_store(self) -> bool:
        """Check if the in-memory contact store is selected."""
        return self.store_backend.strip().lower() == "memory"


settings = Settings()
