from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import SecretStr
from functools import lru_cache
from typing import Optional


class DatabaseSettings(BaseSettings):
    # Postgres
    HOST: str
    USER: str
    PASSWORD: SecretStr
    NAME: str
    PORT: int = 5432

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class APISettings(BaseSettings):
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1
    LOG_LEVEL: str = "INFO"

    # Authentication
    API_KEY: Optional[SecretStr] = None
    ALLOWED_API_KEYS: Optional[str] = None

    # Connection pool
    POOL_MIN_SIZE: int = 5
    POOL_MAX_SIZE: int = 20
    POOL_TIMEOUT: float = 30.0

    CORS_ORIGINS: str = "*"

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class EmbeddingSettings(BaseSettings):
    # OpenAI embeddings
    API_KEY: SecretStr
    BASE_URL: Optional[str] = None
    MODEL: str = "text-embedding-3-small"
    DIM: int = 1536
    MAX_TOKENS: int = 8191

    model_config = SettingsConfigDict(
        env_prefix="EMBED_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class ChatSettings(BaseSettings):
    # OpenAI chat completions
    API_KEY: SecretStr
    BASE_URL: Optional[str] = None
    MODEL: str = "gpt-3.5-turbo"
    ROUTER_MODEL: str = "gpt-4-turbo-preview"
    TEMPERATURE: float = 0.7
    COMPLETION_TOKENS: int = 500
    MAX_CONTEXT_TOKENS: int = 6000

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class HelpdeskSettings(BaseSettings):
    # Semantic search defaults
    SEARCH_MATCH_THRESHOLD: float = 0.5
    SEARCH_MATCH_COUNT: int = 5

    # AI support context retrieval
    CHAT_MATCH_THRESHOLD: float = 0.7
    CHAT_MATCH_COUNT: int = 3

    PERMISSION_CACHE_SECONDS: int = 300
    ARTICLE_URL_PREFIX: str = "/articles"
    EMBED_DELAY_SECONDS: float = 1.0

    model_config = SettingsConfigDict(
        env_prefix="HELPDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_database_settings() -> DatabaseSettings:
    return DatabaseSettings()  # type: ignore


@lru_cache()
def get_api_settings() -> APISettings:
    return APISettings()  # type: ignore


@lru_cache()
def get_embedding_settings() -> EmbeddingSettings:
    return EmbeddingSettings()  # type: ignore


@lru_cache()
def get_chat_settings() -> ChatSettings:
    return ChatSettings()  # type: ignore


@lru_cache()
def get_helpdesk_settings() -> HelpdeskSettings:
    return HelpdeskSettings()
