"""
Core configuration management for Agora
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Environment
    environment: str = Field(default="development", env="ENVIRONMENT")
    debug: bool = Field(default=True, env="DEBUG")
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_to_file: bool = Field(default=True, env="LOG_TO_FILE")
    log_dir: str = Field(default="logs", env="LOG_DIR")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_reload: bool = Field(default=True, env="API_RELOAD")
    allowed_hosts: str = Field(default="*", env="ALLOWED_HOSTS")

    # Database Configuration
    database_url: str = Field(default="sqlite:///./agora.db", env="DATABASE_URL")
    breaker_store: str = Field(default="memory", env="BREAKER_STORE")  # memory, sql
    vector_db_type: str = Field(default="memory", env="VECTOR_DB_TYPE")  # memory, qdrant
    qdrant_host: str = Field(default="localhost", env="QDRANT_HOST")
    qdrant_port: int = Field(default=6333, env="QDRANT_PORT")
    qdrant_collection: str = Field(default="agora_knowledge", env="QDRANT_COLLECTION")

    # LLM Configuration
    llm_provider: str = Field(default="openai", env="LLM_PROVIDER")
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")

    # Model Settings
    default_llm_model: str = Field(default="gpt-4o-mini", env="DEFAULT_LLM_MODEL")
    fallback_models: str = Field(default="gpt-4o-mini,gpt-4o,gpt-4.1-mini", env="FALLBACK_MODELS")
    analysis_model: str = Field(default="gpt-4o-mini", env="ANALYSIS_MODEL")
    embedding_model: str = Field(default="text-embedding-3-small", env="EMBEDDING_MODEL")
    invocation_strategy: str = Field(default="sequential", env="INVOCATION_STRATEGY")  # sequential, parallel
    max_parallel_models: int = Field(default=3, env="MAX_PARALLEL_MODELS")
    max_invocation_timeout: float = Field(default=45.0, env="MAX_INVOCATION_TIMEOUT")
    embedding_timeout: float = Field(default=15.0, env="EMBEDDING_TIMEOUT")

    # Circuit Breaker
    breaker_half_open_probe: bool = Field(default=False, env="BREAKER_HALF_OPEN_PROBE")
    breaker_probe_lease: float = Field(default=30.0, env="BREAKER_PROBE_LEASE")

    # Classifier
    classifier_enrichment_threshold: float = Field(default=0.7, env="CLASSIFIER_ENRICHMENT_THRESHOLD")
    classifier_timeout: float = Field(default=12.0, env="CLASSIFIER_TIMEOUT")
    classifier_max_retries: int = Field(default=2, env="CLASSIFIER_MAX_RETRIES")
    retry_base_delay: float = Field(default=1.0, env="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(default=5.0, env="RETRY_MAX_DELAY")

    # Agent Configuration
    agent_cache_ttl: int = Field(default=900, env="AGENT_CACHE_TTL")
    agent_cache_size: int = Field(default=200, env="AGENT_CACHE_SIZE")
    max_context_messages: int = Field(default=10, env="MAX_CONTEXT_MESSAGES")
    max_context_message_chars: int = Field(default=500, env="MAX_CONTEXT_MESSAGE_CHARS")

    # RAG Configuration
    max_retrieved_docs: int = Field(default=10, env="MAX_RETRIEVED_DOCS")
    similarity_threshold: float = Field(default=0.35, env="SIMILARITY_THRESHOLD")
    orchestration_knowledge_threshold: float = Field(default=0.3, env="ORCHESTRATION_KNOWLEDGE_THRESHOLD")
    orchestration_knowledge_results: int = Field(default=5, env="ORCHESTRATION_KNOWLEDGE_RESULTS")
    history_window: int = Field(default=4, env="HISTORY_WINDOW")
    keyword_backfill: bool = Field(default=True, env="KEYWORD_BACKFILL")

    # Monitoring
    enable_metrics: bool = Field(default=True, env="ENABLE_METRICS")
    log_requests: bool = Field(default=True, env="LOG_REQUESTS")

    # Computed properties
    @property
    def fallback_models_list(self) -> List[str]:
        """Get the configured fallback model chain as a list."""
        return [model.strip() for model in self.fallback_models.split(",") if model.strip()]

    @property
    def allowed_hosts_list(self) -> List[str]:
        """Get allowed hosts as a list."""
        return [host.strip() for host in self.allowed_hosts.split(",")]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
