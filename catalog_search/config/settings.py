from pydantic_settings import BaseSettings
from typing import List, Optional
import json


class Settings(BaseSettings):
    # Database Configuration
    DATABASE_URL: str
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "catalog"
    DB_PORT: int = 5432

    # Backend Configuration
    BACKEND_PORT: int = 8080

    # App Info
    APP_NAME: str = "Catalog Search Backend"
    VERSION: str = "1.0.0"

    # CORS
    ALLOWED_HOSTS: str = '["*"]'

    @property
    def allowed_hosts_list(self) -> List[str]:
        """Parse ALLOWED_HOSTS from JSON string to list"""
        try:
            return json.loads(self.ALLOWED_HOSTS)
        except (json.JSONDecodeError, TypeError):
            return ["*"]

    # Environment
    ENVIRONMENT: str = "development"

    # Embedding Configuration
    # "database" calls the engine's embedding functions inside the query,
    # "local" computes vectors in-process and binds them as parameters; the
    # product vectors must then be written by the same models
    # (python -m migrations.product_migration --backfill-embeddings).
    EMBEDDING_PROVIDER: str = "database"
    TEXT_EMBEDDING_MODEL: str = "text-embedding-005"
    IMAGE_EMBEDDING_MODEL: str = "multimodalembedding@001"
    IMAGE_MIME_TYPE: str = "image/png"
    TEXT_EMBEDDING_DIM: int = 768
    IMAGE_EMBEDDING_DIM: int = 1408

    # Full-text search
    FTS_LANGUAGE: str = "english"

    # Retrieval tuning
    PAGE_SIZE: int = 12
    HYBRID_PAGE_SIZE: int = 20
    CANDIDATE_POOL_SIZE: int = 500
    HYBRID_STRATEGY_LIMIT: int = 40
    SEMANTIC_MAX_DISTANCE: float = 0.6
    IMAGE_MAX_DISTANCE: float = 0.8

    # Reciprocal Rank Fusion
    RRF_K_SQL: int = 60
    RRF_K_FTS: int = 60
    RRF_K_VECTOR: int = 60
    RRF_SCORE_DIGITS: int = 4

    # Image storage
    STORAGE_URI_PREFIX: str = "gs://"
    STORAGE_PUBLIC_URL: str = "https://storage.googleapis.com/"

    # AI functions
    NL_CONFIG_ID: str = "catalog_search"
    AI_FILTER_MODEL_ID: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
