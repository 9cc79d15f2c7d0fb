"""
Centralized application configuration – loaded from environment variables.
"""

from __future__ import annotations

from urllib.parse import quote

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All env-driven configuration in one place."""

    # ── App ───────────────────────────────────────────────────────
    APP_NAME: str = "Analysis Bot"
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "DEBUG"

    # ── Database ──────────────────────────────────────────────────
    # Either a full DSN, or the discrete parts below.
    DATABASE_URL: str = ""
    DB_SERVER: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "analysis"
    DB_USER: str = "analysis"
    DB_PASSWORD: str = ""
    DB_ENCRYPT: bool = True

    # ── Analysis dialog ───────────────────────────────────────────
    ANALYSIS_TABLE: str = "Persons"
    ANALYSIS_ALLOWED_TABLES: str = ""
    DATA_SOURCES: str = "Occupancy Data,Check-in Data"
    DATA_SOURCE_MODE: str = "choice"
    DATA_SOURCE_MIN_LENGTH: int = 5
    TIME_PERIOD_MIN_LENGTH: int = 5
    QUERY_STRATEGY: str = "buffered"

    # ── CORS ──────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:5173"

    # ── Langfuse Observability ─────────────────────────────────
    LANGFUSE_ENABLED: bool = False
    LANGFUSE_PUBLIC_KEY: str = ""
    LANGFUSE_SECRET_KEY: str = ""
    LANGFUSE_HOST: str = "https://cloud.langfuse.com"

    # ── Helpers ───────────────────────────────────────────────────
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return _split_csv(self.CORS_ORIGINS)

    @property
    def data_sources_list(self) -> list[str]:
        """Candidate data sources offered by the choice prompt."""
        return _split_csv(self.DATA_SOURCES)

    @property
    def allowed_tables_list(self) -> list[str]:
        return [t.lower() for t in _split_csv(self.ANALYSIS_ALLOWED_TABLES)]

    @property
    def database_dsn(self) -> str:
        """
        DSN for asyncpg.

        ``DATABASE_URL`` wins when set (SQLAlchemy-style ``+asyncpg`` driver
        suffixes are stripped); otherwise the DSN is assembled from the
        ``DB_*`` parts, with ``DB_ENCRYPT`` mapped to ``sslmode=require``.
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://")

        credentials = quote(self.DB_USER, safe="")
        if self.DB_PASSWORD:
            credentials += ":" + quote(self.DB_PASSWORD, safe="")
        dsn = (
            f"postgresql://{credentials}@{self.DB_SERVER}:{self.DB_PORT}/"
            f"{quote(self.DB_NAME, safe='')}"
        )
        if self.DB_ENCRYPT:
            dsn += "?sslmode=require"
        return dsn

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def _split_csv(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


settings = Settings()
