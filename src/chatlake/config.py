"""
ChatLake Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables (and an optional .env file).
"""

import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_dir() -> str:
    """
    Get XDG-compliant data directory for ChatLake raw artifacts.

    Follows XDG Base Directory Specification:
    - Uses $XDG_DATA_HOME/chatlake if XDG_DATA_HOME is set
    - Falls back to $HOME/.local/share/chatlake if not set
    - Returns relative path .chatlake_data if HOME not available (dev/testing)

    Returns:
        str: Path to data directory
    """
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "chatlake")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "chatlake")

    return ".chatlake_data"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for ChatLake logs.

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "chatlake" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "chatlake" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    postgres_db: str = "chatlake"
    postgres_user: str = "chatlake"
    postgres_password: str = "chatlake_dev_password"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    database_url_override: str = ""  # e.g. sqlite:///chatlake.db

    @property
    def database_url(self) -> str:
        """Database URL, either the explicit override or built from components."""
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Raw store
    artifact_dir: str = ""  # Defaults to XDG data dir + /artifacts
    inline_artifact_max_bytes: int = 0  # 0 = always file-backed

    @property
    def artifact_root(self) -> Path:
        """Root directory for file-backed raw artifacts."""
        if self.artifact_dir:
            return Path(self.artifact_dir).expanduser()
        return Path(get_xdg_data_dir()) / "artifacts"

    # Model provider
    llm_provider: str = "ollama"  # ollama or openai
    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    embedding_dimensions: int = 768
    embedding_max_chars: int = 3000
    naming_model: str = "llama3.2"
    provider_timeout_seconds: float = 120.0

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_max_tokens: int = 200

    # Ingestion
    ingest_commit_interval: int = 50  # Conversations per checkpoint commit
    import_stale_threshold_minutes: int = 60

    # Segmentation
    segmentation_window_size: int = 4
    segmentation_similarity_threshold: float = 0.55
    segmentation_min_segment_size: int = 3
    segmentation_max_segment_size: int = 50
    segmentation_min_conversation_messages: int = 3
    segmentation_min_content_length: int = 200

    # Embedding cache
    embedding_checkpoint_interval: int = 25  # Units per checkpoint commit

    # Clustering
    clustering_umap_dimensions: int = 15
    clustering_umap_neighbors: int = 15
    clustering_min_cluster_size: int = 5
    clustering_min_points: int = 3
    clustering_random_seed: int = 42
    clustering_auto_accept_threshold: Optional[float] = None  # None = disabled

    # Similarity
    similarity_min_score: float = 0.3
    similarity_max_pairs_per_conversation: int = 20
    similarity_workers: int = 4

    # Topics
    topic_count: int = 10
    topic_keywords_per_topic: int = 10
    topic_min_score: float = 0.05

    # Drift
    drift_window_size_days: int = 30
    drift_min_conversations_per_window: int = 3
    drift_lookback_days: int = 365

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # INFO/DEBUG to stdout
    log_to_stderr: bool = True  # WARNING and above to stderr

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
