"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from pydantic_settings import BaseSettings

from rag_composer.config import constants


class Settings(BaseSettings):
    # Batching / streaming
    batch_max_concurrency: int = constants.DEFAULT_BATCH_CONCURRENCY
    stream_buffer_size: int = constants.DEFAULT_STREAM_BUFFER_SIZE

    # Retry
    retry_max_retries: int = 3
    retry_initial_delay_s: float = 0.5
    retry_backoff_factor: float = 2.0
    retry_max_delay_s: float = 30.0
    retry_jitter: float = 0.1

    # Execution context
    default_timeout_s: float | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Storage paths (reference providers)
    embedding_cache_db_path: str = "data/embedding_cache.db"
    memory_db_path: str = "data/memory.db"

    model_config = {"env_file": ".env", "env_prefix": "RAG_COMPOSER_"}
