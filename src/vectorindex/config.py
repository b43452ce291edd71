from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "vectorindex"

    # Only the pgvector driver needs it; validated when that driver is built
    database_url: str = ""

    default_driver_id: str = "pgvector"

    # text-embedding-* models go through OpenAI, anything else through FastEmbed
    embedding_model: str = "text-embedding-3-small"
    openai_api_key: Optional[str] = None
    embedding_dimensions: int = 1536

    reindex_page_size: int = 50

    # Tenant encryption of stored result fields is off unless a key is set
    encryption_master_key: Optional[str] = None

    # "package.module:callable" returning a VectorIndexService (CLI / HTTP)
    service_factory: Optional[str] = None

    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_recycle: int = 3600
    db_pool_pre_ping: bool = True

    # Generic environment (debug/prod)
    APP_ENV: str = "local"  # or "production"
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
