"""Environment-driven settings for the API process and the ingestion CLI.

Settings groups:
- Data stores (PostgreSQL + pgvector, Redis) and cache defaults
- Model backend endpoints (embedding server, reranker, Ollama chat/generate)
- Registered embedding models and their instruction prefixes
- Documentation source URLs and ingestion defaults
- Logging and tracing

Settings are read at entry points only (API handlers, CLI, startup hooks); the
pipeline itself receives explicit configuration objects.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class EmbeddingModelSpec(BaseModel):
    """Declaration of an embedding model served by the embedding backend.

    Attributes:
        name: Model name as known to the backend.
        dimension: Length of the vectors the model produces.
        query_prefix: Instruction prepended to queries before embedding.
        document_prefix: Instruction prepended to document chunks before embedding.
    """
    name: str = Field(..., min_length=1)
    dimension: int = Field(..., gt=0, le=16000)
    query_prefix: str = ""
    document_prefix: str = ""


class Settings(BaseSettings):
    """Typed settings read from the process environment or a .env file.

    Names are matched case-insensitively; EMBEDDING_MODELS is given as JSON, e.g.
    `[{"name": "deepvk/USER-base", "dimension": 768}]`.
    """
    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://docsrag:docsrag@db:5432/docsrag"
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_ENABLED: bool = False
    CACHE_TTL_SECONDS: int = 600

    # Embedding backend (OpenAI-compatible /embeddings endpoint)
    EMBEDDER_BASE_URL: str = "http://embeddings:7997"
    EMBEDDER_API_KEY: str = Field(default="not-needed", description="API key for the embedding server")
    EMBEDDER_TIMEOUT_SECONDS: float = 30.0

    # Reranker
    RERANKER_BACKEND: str = "http"  # "http" or "local"
    RERANKER_URL: str = "http://embeddings:7997/rerank"
    RERANKER_MODEL: str = "qilowoq/bge-reranker-v2-m3-en-ru"
    RERANKER_TIMEOUT_SECONDS: float = 300.0

    # Chat / generation (Ollama)
    OLLAMA_URL: str = "http://ollama:11434"
    LLM_MODEL: str = "llama3.1:8b"
    TRANSLATION_MODEL: str = "llama3.1:8b"
    LLM_TIMEOUT_SECONDS: float = 300.0
    PULL_MODELS_ON_STARTUP: bool = False

    # Registered embedding models; the first one is the default for queries
    EMBEDDING_MODELS: List[EmbeddingModelSpec] = [
        EmbeddingModelSpec(
            name="deepvk/USER-base",
            dimension=768,
            query_prefix="search_query: ",
            document_prefix="search_document: ",
        )
    ]

    # Tokenizer used for chunking
    TOKENIZER_ENCODING: str = "cl100k_base"

    # Documentation source
    DOCS_BASE_URL: str = "https://pascalabc.net/downloads/pabcnethelp/"
    DOCS_CONTENT_URL: str = "https://pascalabc.net/downloads/pabcnethelp/webhelpcontents.htm"
    HTTP_TIMEOUT_SECONDS: float = 20.0

    # Ingestion defaults
    DEFAULT_DELAY_MS: int = 1000
    DEFAULT_CHUNK_SIZE: int = 1500
    DEFAULT_CHUNK_OVERLAP: int = 300
    DEFAULT_BATCH_SIZE: int = 16
    INGEST_CONCURRENCY: int = 1
    SAVE_RETRY_ATTEMPTS: int = 3

    # Admin endpoints
    ADMIN_SECRET: str = ""

    # Logging / tracing
    LOG_LEVEL: str = "INFO"
    OTEL_CONSOLE_EXPORT: bool = False

    @property
    def DEFAULT_EMBEDDING_MODEL(self) -> str:
        """Name of the model used when a query does not name one.

        Returns:
            str: The first configured embedding model name.
        """
        return self.EMBEDDING_MODELS[0].name

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for an entry point (API process or CLI).

    Args:
        level: Log level name; defaults to settings.LOG_LEVEL.
    """
    name = (level or settings.LOG_LEVEL).upper()
    logging.basicConfig(level=getattr(logging, name, logging.INFO), format=LOG_FORMAT)
