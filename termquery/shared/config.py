# Configuration loader with environment variable support
# YAML file per environment + pydantic-settings for secrets and endpoints

import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import TermQueryBaseModel

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = {"memory", "neo4j"}


class AppConfig(BaseModel):
    name: str = "termquery"
    version: str = "0.1.0"
    environment: str = "development"


class BackendConfig(BaseModel):
    """Storage backend selection"""

    kind: str = "memory"
    database: Optional[str] = None
    fulltext_index: str = "description_term_index"
    fetch_size: int = Field(default=1000, gt=0)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v):
        if v not in SUPPORTED_BACKENDS:
            raise ValueError(f"backend.kind must be one of {sorted(SUPPORTED_BACKENDS)}")
        return v


class BranchingConfig(BaseModel):
    root_path: str = "MAIN"

    @field_validator("root_path")
    @classmethod
    def validate_root_path(cls, v):
        if not v or "/" in v:
            raise ValueError("branching.root_path must be a single path segment")
        return v


class IndexConfig(BaseModel):
    """Semantic index build settings"""

    batch_size: int = Field(default=1000, gt=0)
    is_a_type_id: str = "116680003"


class SearchConfig(BaseModel):
    min_term_length: int = 3
    default_language_codes: List[str] = Field(default_factory=lambda: ["en"])
    default_page_size: int = 50
    max_page_size: int = 10000
    large_page_size: int = 10000


class Config(TermQueryBaseModel):
    """Main configuration model"""

    app: AppConfig = Field(default_factory=AppConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    branching: BranchingConfig = Field(default_factory=BranchingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)


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

    # Neo4j
    neo4j_uri: str = Field(default="bolt://localhost:7687", alias="NEO4J_URI")
    neo4j_user: str = Field(default="neo4j", alias="NEO4J_USER")
    neo4j_password: str = Field(default="", alias="NEO4J_PASSWORD")

    # OpenTelemetry
    otel_exporter_otlp_endpoint: Optional[str] = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    otel_service_name: str = Field(default="termquery", alias="OTEL_SERVICE_NAME")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If config file not found
        ValueError: If configuration validation fails
    """
    settings = Settings()

    if settings.config_path:
        config_path = Path(settings.config_path)
    else:
        config_path = Path(__file__).parent.parent.parent / "config" / f"{settings.env}.yaml"

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f) or {}

    config = Config(**config_dict)
    validate_config_at_startup(config, settings)

    return config, settings


def validate_config_at_startup(config: Config, settings: Settings) -> None:
    """
    Fail fast on configuration combinations that cannot serve queries.

    Raises:
        ValueError: If critical validation fails
    """
    logger.info(
        "Configuration loaded: backend=%s root=%s min_term_length=%s batch_size=%s",
        config.backend.kind,
        config.branching.root_path,
        config.search.min_term_length,
        config.index.batch_size,
    )

    if config.search.min_term_length < 1:
        raise ValueError(
            f"search.min_term_length must be positive, got {config.search.min_term_length}"
        )

    if config.search.default_page_size <= 0:
        raise ValueError("search.default_page_size must be positive")

    if config.search.default_page_size > config.search.max_page_size:
        raise ValueError("search.default_page_size cannot exceed search.max_page_size")

    if not config.search.default_language_codes:
        raise ValueError("search.default_language_codes must not be empty")

    if config.backend.kind == "neo4j" and not settings.neo4j_password:
        raise ValueError("NEO4J_PASSWORD is required when backend.kind is neo4j")

    logger.info("Configuration validation successful")


# Global config instances (loaded once at startup)
_config: Optional[Config] = None
_settings: Optional[Settings] = None


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
    global _config, _settings
    _config, _settings = load_config()
    return _config, _settings
