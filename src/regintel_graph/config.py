"""
Configuration management for the RegIntel graph sync engine.

Loads settings from environment variables (and a project-root .env file)
with sensible local-development defaults.
"""

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / '.env'
if _env_file.exists():
    load_dotenv(_env_file)


class Settings(BaseSettings):
    """Graph sync settings loaded from environment variables."""

    # Neo4j
    NEO4J_URI: str = 'bolt://localhost:7687'
    NEO4J_USERNAME: str = 'neo4j'
    NEO4J_PASSWORD: str = ''
    NEO4J_DATABASE: str = 'regintel'

    # Connection pool (session acquisition must not block forever)
    NEO4J_MAX_POOL_SIZE: int = Field(default=50, ge=1)
    NEO4J_ACQUISITION_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0)
    NEO4J_MAX_TRANSACTION_RETRY_SECONDS: float = Field(default=30.0, ge=0)

    # Postgres (curated source views)
    DATABASE_URL: str = ''

    # Environment label prefix table
    GRAPH_STAGING_LABEL_PREFIX: str = '_stg_'
    GRAPH_PRODUCTION_LABEL_PREFIX: str = ''

    # Backfill
    SYNC_MAX_WORKERS: int = Field(default=8, ge=1, le=64)
    SYNC_CONFIG_VERSION: str = 'v1'

    # Logging
    LOG_LEVEL: str = 'INFO'
    LOG_JSON: bool = False

    def validate_settings(self) -> list[str]:
        """
        Validate that required configuration is present.

        Returns:
            List of missing required configuration keys
        """
        missing = []
        if not self.NEO4J_URI:
            missing.append('NEO4J_URI')
        if not self.NEO4J_PASSWORD:
            missing.append('NEO4J_PASSWORD')
        if not self.DATABASE_URL:
            missing.append('DATABASE_URL')
        if not self.GRAPH_STAGING_LABEL_PREFIX:
            missing.append('GRAPH_STAGING_LABEL_PREFIX')
        return missing


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
