"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


def split_csv(value: str | None) -> List[str]:
    """Split a comma separated setting into a clean list."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Engine
    MAX_STEPS: int = 4
    TOOL_TIMEOUT: float = 20.0  # seconds, per tool dispatch

    # Planner Configuration
    PLANNER: str = "heuristic"  # Options: heuristic, openai, anthropic, tgi
    PLANNER_KEYWORDS: str = "jira,ticket,pr,github,pagerduty,incident,alert,slack,workflow"
    PLANNER_MAX_TOOL_ROUNDS: int = 1

    # LLM Configuration
    LLM_PROVIDER: str = "stub"  # Options: stub, openai, anthropic, tgi
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TGI_ENDPOINT: str = "http://tgi:8080/generate"

    # Tool backend
    TOOL_BACKEND: str = "local"  # Options: local, remote
    TOOL_SERVICE_URL: str = "http://localhost:9100"
    TOOL_SERVICE_TOKEN: str | None = None
    TOOL_SERVICE_TIMEOUT: float = 15.0
    TOOL_ALLOWLIST: str = ""  # comma separated fnmatch patterns, empty allows all
    TOOL_DENYLIST: str = ""

    # Knowledge enrichment (empty URL disables it)
    KNOWLEDGE_URL: str = ""
    KNOWLEDGE_TIMEOUT: float = 10.0

    # Memory Configuration
    MEMORY_BACKEND: str = "memory"  # Options: none, memory, chroma
    VECTOR_DB_HOST: str = "chroma"  # Service name in docker-compose
    VECTOR_DB_PORT: int = 8000
    MEMORY_RECENT_TURNS: int = 3
    MEMORY_RELEVANT_TURNS: int = 5
    MEMORY_SUMMARY_ENABLED: bool = True  # rolling summary of older turns
    MEMORY_SUMMARY_KEEP_RECENT: int = 5  # newest turns never folded into the summary
    MEMORY_SUMMARY_BATCH: int = 4  # old turns to accumulate before summarizing

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
