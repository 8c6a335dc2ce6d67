"""Typed pipeline configuration loaded from a JSON file or dict."""

import json
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from ..dedup import MERGE_THRESHOLD, WEIGHTS
from ..errors import ConfigError
from ..models import ScrapeOptions
from ..politeness import PolitenessConfig
from .migrator import migrate_config, validate_config

log = structlog.get_logger(__name__)


class SourceConfig(BaseModel):
    """One source block: whether it runs and its scrape options."""

    enabled: bool = True
    options: ScrapeOptions = Field(default_factory=ScrapeOptions)
    politeness: Optional[PolitenessConfig] = None


class RunConfig(BaseModel):
    concurrency: int = Field(default=4, ge=1)
    timeout_s: Optional[float] = Field(default=None, gt=0)


class DedupConfig(BaseModel):
    threshold: float = Field(default=MERGE_THRESHOLD, gt=0, le=1)
    weights: dict[str, float] = Field(default_factory=lambda: dict(WEIGHTS))


class PipelineConfig(BaseModel):
    """Validated config at the current version."""

    version: int = 2
    sources: dict[str, SourceConfig] = Field(default_factory=dict)
    run: RunConfig = Field(default_factory=RunConfig)
    deduplication: DedupConfig = Field(default_factory=DedupConfig)

    def enabled_sources(self) -> list[str]:
        return [name for name, source in self.sources.items() if source.enabled]

    def scrape_options(self, name: str) -> ScrapeOptions:
        """Options for ``name`` with its politeness block folded in."""
        source = self.sources.get(name)
        if source is None:
            return ScrapeOptions()
        if source.politeness is not None and source.options.politeness is None:
            return source.options.model_copy(update={"politeness": source.politeness})
        return source.options


def load_config(source: Union[str, Path, dict[str, Any]]) -> PipelineConfig:
    """
    Load, migrate and validate a pipeline config.

    Args:
        source: Path to a JSON file, or an already-parsed dict

    Raises:
        ConfigError: Unreadable file, or the config fails validation
    """
    if isinstance(source, dict):
        raw = dict(source)
    else:
        path = Path(source)
        try:
            raw = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e

    config = migrate_config(raw)
    errors = validate_config(config)
    if errors:
        raise ConfigError("; ".join(errors))

    try:
        loaded = PipelineConfig.model_validate(config)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}") from e

    log.info("config_loaded", version=loaded.version, sources=loaded.enabled_sources())
    return loaded
