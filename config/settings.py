"""Runtime settings for the sync service.

Settings are read from the environment; every value has a development
default so the service runs against a local SQLite store out of the box.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Settings(BaseModel):
    """Service configuration."""
    # Store
    db_path: str = Field(default="data/corpus.db", description="SQLite store path")
    projects_dir: str = Field(default="projects", description="Directory of project YAML files")

    # Ingestion
    concurrency_limit: int = Field(default=5, ge=1, description="Concurrent submissions per sync")
    sitemap_max_urls: int = Field(default=10, ge=1, description="Pages taken from a sitemap")
    token_quota: Optional[int] = Field(default=None, description="Per-project content token quota for the local processor")

    # HTTP
    request_timeout: int = Field(default=30, description="Request timeout in seconds")
    max_retries: int = Field(default=2, description="Retries for retryable page fetch failures")
    retry_delay: float = Field(default=0.5, description="Base delay between retries")
    user_agent: str = Field(default="CorpusForge/0.1", description="User agent for outgoing requests")
    block_private_addresses: bool = Field(default=True, description="Refuse to fetch private network URLs")

    # External services
    processor_url: Optional[str] = Field(default=None, description="Embedding processor base URL")
    processor_api_key: Optional[str] = Field(default=None, description="Embedding processor API key")
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    github_token: Optional[str] = Field(default=None, description="GitHub access token")
    motif_api_url: str = Field(default="https://api.motif.land", description="Motif API base URL")
    renderer_url: Optional[str] = Field(default=None, description="High fidelity page renderer URL")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=False, description="Emit JSON logs")

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create settings from environment variables."""
        token_quota = os.getenv('CORPUS_TOKEN_QUOTA')
        return cls(
            db_path=os.getenv('CORPUS_DB_PATH', 'data/corpus.db'),
            projects_dir=os.getenv('CORPUS_PROJECTS_DIR', 'projects'),
            concurrency_limit=int(os.getenv('CORPUS_CONCURRENCY_LIMIT', '5')),
            sitemap_max_urls=int(os.getenv('CORPUS_SITEMAP_MAX_URLS', '10')),
            token_quota=int(token_quota) if token_quota else None,
            request_timeout=int(os.getenv('CORPUS_REQUEST_TIMEOUT', '30')),
            max_retries=int(os.getenv('CORPUS_MAX_RETRIES', '2')),
            retry_delay=float(os.getenv('CORPUS_RETRY_DELAY', '0.5')),
            user_agent=os.getenv('CORPUS_USER_AGENT', 'CorpusForge/0.1'),
            block_private_addresses=_env_bool('CORPUS_BLOCK_PRIVATE_ADDRESSES', True),
            processor_url=os.getenv('PROCESSOR_URL'),
            processor_api_key=os.getenv('PROCESSOR_API_KEY'),
            github_api_url=os.getenv('GITHUB_API_URL', 'https://api.github.com'),
            github_token=os.getenv('GITHUB_TOKEN'),
            motif_api_url=os.getenv('MOTIF_API_URL', 'https://api.motif.land'),
            renderer_url=os.getenv('RENDERER_URL'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_json=_env_bool('LOG_JSON', False),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
