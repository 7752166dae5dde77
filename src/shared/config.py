# Configuration loader with environment variable support
# YAML config (config/{env}.yaml) + environment settings (.env / process env)

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import RealtyBaseModel

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class AppConfig(BaseModel):
    name: str = "realty-rag"
    version: str = "0.1.0"
    log_level: str = "INFO"


class EmbeddingConfig(RealtyBaseModel):
    """Embedding model used for query vectors (must match the indexed vectors)."""

    model_name: str = "text-embedding-3-small"
    dims: int = Field(default=1536, gt=0)
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("dims")
    @classmethod
    def validate_dims(cls, v):
        if v > 4096:
            logger.warning(f"dims={v} is unusually large, typical range is 256-3072")
        return v


class GenerationConfig(RealtyBaseModel):
    model_name: str = "gpt-3.5-turbo"
    max_response_tokens: int = Field(default=1000, gt=0)
    temperature: Optional[float] = None
    timeout_seconds: float = Field(default=60.0, gt=0)
    # Overload handling: attempts beyond the first call
    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=2.0, ge=0)


class BoostWeights(BaseModel):
    """
    Additive re-ranking boosts.

    Relative magnitudes are a tie-break policy: an explicit listing mention in
    the current turn outranks UI context, which outranks development scoping,
    which outranks a single satisfied filter.
    """

    query_listing: float = 1.5
    context_listing: float = 1.0
    development: float = 0.8
    per_filter: float = 0.2

    @model_validator(mode="after")
    def validate_ordering(self):
        if not (
            self.query_listing
            > self.context_listing
            > self.development
            > self.per_filter
            >= 0
        ):
            raise ValueError(
                "boosts must satisfy query_listing > context_listing > "
                "development > per_filter >= 0"
            )
        return self


class RetrievalConfig(BaseModel):
    listing_top_k: int = Field(default=10, gt=0)
    development_top_k: int = Field(default=10, gt=0)
    broad_top_k: int = Field(default=50, gt=0)
    max_results: int = Field(default=20, gt=0)
    tenant_field: str = "client_id"
    boosts: BoostWeights = Field(default_factory=BoostWeights)


class BudgetConfig(BaseModel):
    total_tokens: int = Field(default=4096, gt=0)
    reserved_response_tokens: int = Field(default=1000, ge=0)

    @model_validator(mode="after")
    def validate_reserve(self):
        if self.reserved_response_tokens >= self.total_tokens:
            raise ValueError(
                "reserved_response_tokens must be smaller than total_tokens "
                f"({self.reserved_response_tokens} >= {self.total_tokens})"
            )
        return self


class TokenizerConfig(BaseModel):
    backend: str = "tiktoken"
    encoding: str = "cl100k_base"


class Config(RealtyBaseModel):
    """Main configuration model"""

    app: AppConfig = Field(default_factory=AppConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    tokenizer: TokenizerConfig = Field(default_factory=TokenizerConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")
    tenant_config_dir: Optional[str] = Field(default=None, alias="TENANT_CONFIG_DIR")

    # OpenAI-compatible model API
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", alias="OPENAI_BASE_URL"
    )

    # Qdrant
    qdrant_host: str = Field(default="localhost", alias="QDRANT_HOST")
    qdrant_port: int = Field(default=6333, alias="QDRANT_PORT")
    qdrant_api_key: Optional[str] = Field(default=None, alias="QDRANT_API_KEY")
    qdrant_timeout: int = Field(default=30, alias="QDRANT_TIMEOUT")

    # Supabase (structured listing store)
    supabase_url: str = Field(default="http://localhost:54321", alias="SUPABASE_URL")
    supabase_key: str = Field(default="", alias="SUPABASE_KEY")

    # OpenTelemetry
    otel_exporter_otlp_endpoint: Optional[str] = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    otel_service_name: str = Field(default="realty-rag", alias="OTEL_SERVICE_NAME")

    # Logging
    log_level: Optional[str] = Field(default=None, alias="LOG_LEVEL")

    @property
    def resolved_tenant_config_dir(self) -> Path:
        if self.tenant_config_dir:
            return Path(self.tenant_config_dir)
        return DEFAULT_CONFIG_DIR / "tenants"


_config: Optional[Config] = None
_settings: Optional[Settings] = None


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If an explicitly configured file is missing
        pydantic.ValidationError: If configuration validation fails
    """
    settings = Settings()

    if settings.config_path:
        config_path = Path(settings.config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
    else:
        config_path = DEFAULT_CONFIG_DIR / f"{settings.env}.yaml"

    if config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        logger.warning(
            f"No configuration file at {config_path}; using built-in defaults"
        )
        config_dict = {}

    config = Config(**config_dict)
    if settings.log_level:
        config.app.log_level = settings.log_level

    validate_config_at_startup(config, settings)
    return config, settings


def validate_config_at_startup(config: Config, settings: Settings) -> None:
    """Fail fast on settings that would only surface mid-request."""
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; model calls will be rejected")
    if not settings.supabase_key:
        logger.warning("SUPABASE_KEY is not set; listing store calls may be rejected")
    retrieval = config.retrieval
    if retrieval.max_results > retrieval.broad_top_k + retrieval.listing_top_k + (
        retrieval.development_top_k
    ):
        logger.warning(
            "retrieval.max_results exceeds the total number of candidates "
            "the hybrid search can return"
        )
    logger.info(
        "Configuration validated",
        extra={
            "env": settings.env,
            "embedding_model": config.embedding.model_name,
            "generation_model": config.generation.model_name,
            "token_budget": config.budget.total_tokens,
        },
    )


def get_config() -> Config:
    """Get the global Config instance"""
    global _config
    if _config is None:
        _config, _ = load_config()
    return _config


def get_settings() -> Settings:
    """Get the global Settings instance"""
    global _settings
    if _settings is None:
        _, _settings = load_config()
    return _settings


def init_config() -> tuple[Config, Settings]:
    """Initialize and cache global config instances"""
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings


def reload_config() -> tuple[Config, Settings]:
    """Force reload of config/settings from disk and environment."""
    return init_config()
