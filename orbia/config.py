"""Configuration management for the Orbia agent service."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Service
    service_name: str = Field(default="orbia-agent", alias="SERVICE_NAME")
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_allowed_origins: list[str] = Field(default=["*"], alias="API_ALLOWED_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")

    # Storage
    database_url: str = Field(default="sqlite+aiosqlite:///./orbia.db", alias="DATABASE_URL")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")
    store_backend: Literal["sql", "memory"] = Field(default="sql", alias="STORE_BACKEND")
    graph_backend: Literal["neo4j", "memory"] = Field(default="memory", alias="GRAPH_BACKEND")

    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", alias="NEO4J_USER")
    neo4j_password: str = Field(default="password", alias="NEO4J_PASSWORD")
    neo4j_database: str = Field(default="neo4j", alias="NEO4J_DATABASE")

    # Checkpoints
    checkpoint_ttl_seconds: int = Field(default=24 * 60 * 60, alias="CHECKPOINT_TTL_SECONDS")
    checkpoint_sweep_interval_seconds: int = Field(default=15 * 60, alias="CHECKPOINT_SWEEP_INTERVAL_SECONDS")
    checkpoint_save_retries: int = Field(default=3, alias="CHECKPOINT_SAVE_RETRIES")

    # LLM
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    chat_model: str = Field(default="gpt-4.1-mini", alias="CHAT_MODEL")
    embedding_model: str = Field(default="text-embedding-3-small", alias="EMBEDDING_MODEL")
    llm_extract_facts: bool = Field(default=True, alias="LLM_EXTRACT_FACTS")

    # Timeouts (seconds)
    tool_timeout: float = Field(default=20.0, alias="TOOL_TIMEOUT")
    store_timeout: float = Field(default=10.0, alias="STORE_TIMEOUT")
    model_timeout: float = Field(default=120.0, alias="MODEL_TIMEOUT")

    # Agent
    max_tool_rounds: int = Field(default=8, alias="MAX_TOOL_ROUNDS")

    # Memory
    memory_search_limit: int = Field(default=5, alias="MEMORY_SEARCH_LIMIT")
    memory_search_threshold: float = Field(default=0.3, alias="MEMORY_SEARCH_THRESHOLD")
    memory_relate_threshold: float = Field(default=0.75, alias="MEMORY_RELATE_THRESHOLD")
    memory_max_pending_links: int = Field(default=1000, alias="MEMORY_MAX_PENDING_LINKS")

    # Google APIs
    google_calendar_base_url: str = Field(
        default="https://www.googleapis.com/calendar/v3", alias="GOOGLE_CALENDAR_BASE_URL"
    )
    google_drive_base_url: str = Field(default="https://www.googleapis.com/drive/v3", alias="GOOGLE_DRIVE_BASE_URL")
    google_docs_base_url: str = Field(default="https://docs.googleapis.com/v1", alias="GOOGLE_DOCS_BASE_URL")
    gmail_base_url: str = Field(default="https://gmail.googleapis.com/gmail/v1", alias="GMAIL_BASE_URL")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
