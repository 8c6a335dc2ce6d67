"""
Configuration migrator for backwards compatibility.

Handles version migrations:
- v1 -> v2: Flat source list and shared options became per-source blocks,
  added run and deduplication sections
"""

from typing import Any
import structlog

from ..dedup import MERGE_THRESHOLD, WEIGHTS

log = structlog.get_logger(__name__)

CURRENT_VERSION = 2

KNOWN_SOURCES = ("ticketmaster", "eventbrite", "artscentre", "marriner", "feverup", "whatson")

# v1 flat keys that apply to every source
_SHARED_V1_OPTIONS = {
    "max_events": "maxEvents",
    "detail_fetch_delay": "detailFetchDelay",
    "use_browser": "useBrowser",
}

# v1 keys prefixed with a source name: "<source>_<option>"
_SOURCE_V1_OPTIONS = {
    "api_key": "apiKey",
    "organizer_ids": "organizerIds",
    "categories": "categories",
    "max_pages": "maxPages",
    "max_shows": "maxShows",
    "city": "city",
}


def migrate_config(config: dict[str, Any]) -> dict[str, Any]:
    """
    Migrate config from any version to current.

    Args:
        config: Raw config dict (may be any version)

    Returns:
        Config dict at CURRENT_VERSION
    """
    version = config.get("version", 1)

    # Newer versions are left for validate_config to reject
    if version >= CURRENT_VERSION:
        return config

    log.info("migrating_config", from_version=version, to_version=CURRENT_VERSION)

    if version == 1:
        config = _migrate_v1_to_v2(config)

    config["version"] = CURRENT_VERSION
    return config


def _migrate_v1_to_v2(config: dict[str, Any]) -> dict[str, Any]:
    """
    Migrate v1 config to v2 format.

    Changes:
    - sources (list[str]) -> sources.<name> {enabled, options}
    - max_events / detail_fetch_delay / use_browser -> every source's options
    - <source>_<option> keys -> that source's options
    - concurrency / timeout -> run section
    - dedup_threshold -> deduplication.threshold, added deduplication.weights
    """
    migrated = {k: v for k, v in config.items() if k not in ("sources", "concurrency", "timeout", "dedup_threshold")}
    names = config.get("sources") or []
    if isinstance(names, dict):
        names = list(names)

    shared = {
        new: config[old]
        for old, new in _SHARED_V1_OPTIONS.items()
        if old in config
    }
    for old in _SHARED_V1_OPTIONS:
        migrated.pop(old, None)

    sources: dict[str, Any] = {}
    for name in names:
        options = dict(shared)
        for suffix, new in _SOURCE_V1_OPTIONS.items():
            key = f"{name}_{suffix}"
            if key in config:
                options[new] = config[key]
                migrated.pop(key, None)
        sources[name] = {"enabled": True, "options": options}
    migrated["sources"] = sources
    log.info("migrated_sources", count=len(sources))

    migrated["run"] = {
        "concurrency": config.get("concurrency", 4),
        "timeout_s": config.get("timeout"),
    }

    migrated["deduplication"] = {
        "threshold": config.get("dedup_threshold", MERGE_THRESHOLD),
        "weights": dict(WEIGHTS),
    }
    log.info("added_default_dedup_weights")

    return migrated


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate config and return list of errors.

    Returns:
        List of error messages (empty if valid)
    """
    errors: list[str] = []

    # Check version
    version = config.get("version", 1)
    if version > CURRENT_VERSION:
        errors.append(
            f"Config version {version} is newer than supported version {CURRENT_VERSION}"
        )

    # Check sources
    sources = config.get("sources", {})
    if not isinstance(sources, dict):
        errors.append("sources must be a mapping of source name to settings")
        sources = {}
    for name in sources:
        if name not in KNOWN_SOURCES:
            errors.append(f"Unknown source: {name}")

    # Check run settings
    run = config.get("run", {})
    concurrency = run.get("concurrency", 4)
    if not isinstance(concurrency, int) or concurrency < 1:
        errors.append(f"Invalid run.concurrency: {concurrency} (must be >= 1)")
    timeout = run.get("timeout_s")
    if timeout is not None and timeout <= 0:
        errors.append(f"Invalid run.timeout_s: {timeout} (must be > 0)")

    # Check deduplication threshold range
    threshold = config.get("deduplication", {}).get("threshold", MERGE_THRESHOLD)
    if not 0 < threshold <= 1:
        errors.append(f"Invalid deduplication threshold: {threshold} (must be 0-1)")

    # Check weights sum to 1
    weights = config.get("deduplication", {}).get("weights", {})
    if weights:
        missing = {"title", "venue", "date"} - set(weights)
        if missing:
            errors.append(f"Deduplication weights missing: {', '.join(sorted(missing))}")
        total = sum(weights.values())
        if abs(total - 1.0) > 0.01:
            errors.append(f"Deduplication weights must sum to 1.0, got {total}")

    return errors


def get_default_config() -> dict[str, Any]:
    """Return default config for new installations."""
    return {
        "version": CURRENT_VERSION,
        "sources": {
            "ticketmaster": {"enabled": True, "options": {"maxEvents": 200}},
            "eventbrite": {"enabled": False, "options": {"organizerIds": []}},
            "artscentre": {"enabled": True, "options": {"maxDetailFetches": 40}},
            "marriner": {"enabled": True, "options": {"maxShows": 100}},
            "feverup": {"enabled": True, "options": {"maxEvents": 50}},
            "whatson": {
                "enabled": True,
                "options": {"categories": ["theatre", "music"], "maxPages": 5},
            },
        },
        "run": {
            "concurrency": 4,
            "timeout_s": 3600,
        },
        "deduplication": {
            "threshold": MERGE_THRESHOLD,
            "weights": dict(WEIGHTS),
        },
    }
