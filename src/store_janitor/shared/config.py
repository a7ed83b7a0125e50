# Configuration loader with environment variable support
# YAML config for janitor behavior, environment settings for store endpoints

import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings

from .models import JanitorBaseModel

logger = logging.getLogger(__name__)

DEFAULT_DANGLING_ONTOLOGY_IDS = ["company", "product", "issue", "state"]
DEFAULT_PLACEHOLDER_MARKERS = ["Predefined mapping"]
DEFAULT_LEGACY_KEY_PATTERNS = [
    "ontology:pack:*",
    "ontology:version:*",
    "ontology:pack_versions:*",
    "ontology:active:*",
    "ontology:packs",
    "ontology:predefined:*",
    "ontology:custom:*",
]


class GraphStoreConfig(BaseModel):
    """Triple store endpoint behavior (URL and repository come from env)."""

    timeout: float = Field(default=30.0, gt=0)
    page_size: int = Field(default=500, gt=0)
    graph_iri_base: str = "http://purplefabric.ai/graphs"

    @validator("graph_iri_base")
    def _strip_trailing_slash(cls, v):
        if not v or not v.strip():
            raise ValueError("graph_iri_base cannot be empty")
        return v.strip().rstrip("/")


class JobKeyspaceConfig(BaseModel):
    hash_prefix: str = "ontology_job:"
    file_lookup_prefix: str = "ontology_job:file:"
    list_prefix: str = "ontology_jobs:"
    workspace_id_field: str = "workspace_id"


class DocumentKeyspaceConfig(BaseModel):
    document_prefix: str = "doc:"
    chunk_prefix: str = "chunk:"
    chunk_set_suffix: str = ":chunks"
    document_id_field: str = "documentId"
    workspace_id_field: str = "workspace_id"


class KeyspaceConfig(BaseModel):
    jobs: JobKeyspaceConfig = Field(default_factory=JobKeyspaceConfig)
    documents: DocumentKeyspaceConfig = Field(default_factory=DocumentKeyspaceConfig)
    legacy_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_LEGACY_KEY_PATTERNS)
    )


class PolicyConfig(BaseModel):
    dangling_ontology_ids: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DANGLING_ONTOLOGY_IDS)
    )
    placeholder_markers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PLACEHOLDER_MARKERS)
    )
    dangling_scope: str = "global"

    @validator("dangling_ontology_ids", "placeholder_markers", each_item=True)
    def _entries_not_blank(cls, value: str):
        if not value or not value.strip():
            raise ValueError("policy list entries must be non-empty")
        return value.strip()

    @validator("dangling_scope")
    def _valid_scope(cls, v):
        allowed = {"global", "tenant", "workspace", "all"}
        if v not in allowed:
            raise ValueError(f"dangling_scope must be one of {sorted(allowed)}")
        return v


class PurgeConfig(BaseModel):
    max_workers: int = Field(default=1, ge=1, le=32)


class ScanConfig(BaseModel):
    count: int = Field(default=200, gt=0)


class ReportConfig(BaseModel):
    enabled: bool = True
    report_dir: str = "reports/janitor"


class Config(JanitorBaseModel):
    """Main configuration model"""

    graph_store: GraphStoreConfig = Field(default_factory=GraphStoreConfig)
    keyspace: KeyspaceConfig = Field(default_factory=KeyspaceConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    purge: PurgeConfig = Field(default_factory=PurgeConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)


class Settings(BaseSettings):
    """Environment-based settings"""

    # Environment
    env: str = Field(default="development", alias="ENV")
    config_path: Optional[str] = Field(default=None, alias="CONFIG_PATH")

    # Triple store
    graphdb_url: str = Field(default="http://localhost:7200", alias="GRAPHDB_URL")
    graphdb_repository: str = Field(default="ontologies", alias="GRAPHDB_REPOSITORY")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_db: int = Field(default=0, alias="REDIS_DB")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


@lru_cache(maxsize=None)
def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent.parent


def load_config() -> tuple[Config, Settings]:
    """
    Load configuration from YAML file and environment variables.

    The YAML file is optional: when ``config/<ENV>.yaml`` does not exist the
    built-in defaults are used. An explicit ``CONFIG_PATH`` must exist.

    Returns:
        tuple: (Config, Settings) - YAML config and environment settings

    Raises:
        FileNotFoundError: If an explicit CONFIG_PATH does not exist
        pydantic.ValidationError: If the YAML content is invalid
    """
    settings = Settings()

    if settings.config_path:
        config_path = Path(settings.config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
    else:
        config_path = _project_root() / "config" / f"{settings.env}.yaml"

    if config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        logger.info(f"No configuration file at {config_path}; using defaults")
        config_dict = {}

    config = Config(**config_dict)
    return config, settings


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
