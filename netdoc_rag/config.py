"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- Chunking sizes (parent/child window and overlap)
- Query understanding knobs (confidence floor, history window, lexicon path)
- Hybrid retrieval (RRF smoothing constant, per-intent minimum scores, channel timeouts)
- Query cache backend, TTL and capacity
- Reranker model, enablement and timeout
- Embedding model used by the vector channel

The RRF constant and minimum-score thresholds are tunable defaults, not derived
constants; override them per deployment through the environment.
"""
from typing import Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Embeddings (vector channel)
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_BATCH_SIZE: int = 96
    VECTOR_ENABLED: bool = True  # false -> keyword channel only

    # Chunking (characters)
    MAX_PARENT_SIZE: int = 2000
    MAX_CHILD_SIZE: int = 600
    CHUNK_OVERLAP: int = 80

    # Ingestion
    DOCS_DIR: str = ""

    # Query understanding
    LEXICON_PATH: str = ""  # empty -> bundled netdoc_rag/data/lexicon.yaml
    INTENT_CONFIDENCE_FLOOR: float = 0.6
    INTENT_HISTORY_TURNS: int = 2

    # Retrieval
    TOP_K: int = 8
    CHANNEL_CANDIDATES: int = 50
    RRF_K: int = 60
    MIN_SCORE_DEFAULT: float = 0.01
    MIN_SCORE_BY_INTENT: Dict[str, float] = {
        "configuration": 0.005,
        "network_config": 0.005,
        "command": 0.008,
        "verification": 0.008,
    }
    KEYWORD_TIMEOUT_SECONDS: float = 2.0
    VECTOR_TIMEOUT_SECONDS: float = 4.0
    BACKEND_MAX_ATTEMPTS: int = Field(default=2, ge=1, le=2)
    BACKEND_RETRY_BASE_SECONDS: float = 0.1

    # Query cache
    CACHE_BACKEND: str = "memory"  # memory | redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 300
    CACHE_CAPACITY: int = 512

    # Reranking
    RERANKER_ENABLED: bool = False
    RERANKER_MODEL_NAME: str = "BAAI/bge-reranker-base"
    RERANKER_TOPN: int = 40
    RERANK_TIMEOUT_SECONDS: float = 5.0

    # Observability
    OTEL_CONSOLE_EXPORT: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    def min_score_for(self, intent: str) -> float:
        """Minimum fused RRF score a result needs to survive for the given intent.

        Args:
            intent: Intent label (IntentResult.intent or a legacy route name).

        Returns:
            float: Threshold from MIN_SCORE_BY_INTENT, else MIN_SCORE_DEFAULT.
        """
        return self.MIN_SCORE_BY_INTENT.get(intent, self.MIN_SCORE_DEFAULT)


settings = Settings()
