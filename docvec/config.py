"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables (or a ``.env`` file).
No secrets are hardcoded. The embedding token, datastore URL and datastore
key have no defaults, so a missing value fails when settings are loaded.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from docvec.exceptions import ConfigurationError


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class EmbeddingProvider(str, Enum):
    """Supported embedding-inference providers."""

    HUGGINGFACE = "huggingface"
    OPENAI = "openai"


class StoreBackend(str, Enum):
    """Supported remote datastores."""

    SUPABASE = "supabase"
    QDRANT = "qdrant"


class EmbeddingSettings(BaseSettings):
    """Embedding service configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider: EmbeddingProvider = Field(
        default=EmbeddingProvider.HUGGINGFACE,
        description="Embedding provider API flavour",
    )
    base_url: str = Field(
        default="https://router.huggingface.co/hf-inference/models",
        description="Embedding service base URL",
    )
    model: str = Field(
        default="NeuML/pubmedbert-base-embeddings",
        description="Embedding model identifier",
    )
    api_token: SecretStr = Field(
        description="Embedding service access token",
    )
    batch_size: int = Field(
        default=32,
        gt=0,
        description="Maximum texts per embedding request",
    )
    timeout: float | None = Field(
        default=30.0,
        description="Request timeout in seconds (None waits indefinitely)",
    )


class StoreSettings(BaseSettings):
    """Remote datastore configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend: StoreBackend = Field(
        default=StoreBackend.SUPABASE,
        description="Datastore flavour",
    )
    url: str = Field(
        description="Datastore base URL",
    )
    api_key: SecretStr = Field(
        description="Datastore access key",
    )
    table: str = Field(
        default="documents",
        description="Table (or collection) holding documents",
    )
    match_function: str = Field(
        default="match_documents",
        description="Server-side similarity search procedure",
    )
    id_column: str = Field(
        default="id",
        description="Primary key column returned on insert",
    )
    score_field: str = Field(
        default="similarity",
        description="Column carrying the similarity score in search rows",
    )
    timeout: float | None = Field(
        default=30.0,
        description="Request timeout in seconds (None waits indefinitely)",
    )


class RetrySettings(BaseSettings):
    """Retry policy applied to every remote call."""

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per remote call, including the first",
    )
    initial_delay: float = Field(
        default=0.25,
        ge=0.0,
        description="Delay before the first retry in seconds",
    )
    max_delay: float = Field(
        default=4.0,
        ge=0.0,
        description="Upper bound on a single backoff delay in seconds",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier",
    )
    jitter: bool = Field(
        default=True,
        description="Randomize delays by +/-25%",
    )


class PipelineSettings(BaseSettings):
    """Ingestion and query pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    match_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Default minimum similarity for search",
    )
    match_count: int = Field(
        default=5,
        ge=0,
        description="Default maximum number of search results",
    )
    max_concurrency: int | None = Field(
        default=None,
        gt=0,
        description="Bound on in-flight pipeline calls (None is unbounded)",
    )


class Settings(BaseSettings):
    """Main application settings.

    Aggregates all configuration sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    vector_dimensions: int = Field(
        default=768,
        gt=0,
        description="Embedding width shared by the embedder and the datastore",
    )

    # Nested settings
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)


def load_settings() -> Settings:
    """Load settings from the environment.

    Returns:
        Settings instance.

    Raises:
        ConfigurationError: If a required value is missing or invalid.
    """
    try:
        return Settings()
    except PydanticValidationError as e:
        problems = [
            {
                "setting": ".".join(str(part) for part in err["loc"]),
                "reason": err["msg"],
            }
            for err in e.errors()
        ]
        raise ConfigurationError(
            f"Invalid configuration ({e.title}): "
            + ", ".join(f"{p['setting']}: {p['reason']}" for p in problems),
            details={"errors": problems},
        ) from e


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ConfigurationError: If required configuration is absent.
    """
    return load_settings()
