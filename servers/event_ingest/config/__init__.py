"""Pipeline configuration: versioned JSON migrated to typed settings."""

from .migrator import CURRENT_VERSION, get_default_config, migrate_config, validate_config
from .settings import DedupConfig, PipelineConfig, RunConfig, SourceConfig, load_config

__all__ = [
    "CURRENT_VERSION",
    "get_default_config",
    "migrate_config",
    "validate_config",
    "DedupConfig",
    "PipelineConfig",
    "RunConfig",
    "SourceConfig",
    "load_config",
]
