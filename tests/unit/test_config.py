"""Tests for config migration, validation and loading."""

import json

import pytest

from servers.event_ingest.config import (
    CURRENT_VERSION,
    PipelineConfig,
    get_default_config,
    load_config,
    migrate_config,
    validate_config,
)
from servers.event_ingest.errors import ConfigError


V1_CONFIG = {
    "sources": ["marriner", "eventbrite", "whatson"],
    "max_events": 25,
    "detail_fetch_delay": 2000,
    "eventbrite_api_key": "tok",
    "eventbrite_organizer_ids": ["111"],
    "whatson_categories": ["theatre"],
    "concurrency": 2,
    "timeout": 900,
    "dedup_threshold": 0.85,
}


class TestMigrateConfig:
    """Tests for migrate_config."""

    def test_current_version_unchanged(self):
        config = get_default_config()
        assert migrate_config(config) is config

    def test_v1_sources_become_blocks(self):
        """Each listed v1 source gets an enabled block with shared options."""
        migrated = migrate_config(dict(V1_CONFIG))

        assert migrated["version"] == CURRENT_VERSION
        assert set(migrated["sources"]) == {"marriner", "eventbrite", "whatson"}
        marriner = migrated["sources"]["marriner"]
        assert marriner["enabled"] is True
        assert marriner["options"] == {"maxEvents": 25, "detailFetchDelay": 2000}

    def test_v1_prefixed_options_go_to_their_source(self):
        migrated = migrate_config(dict(V1_CONFIG))

        eventbrite = migrated["sources"]["eventbrite"]["options"]
        assert eventbrite["apiKey"] == "tok"
        assert eventbrite["organizerIds"] == ["111"]
        assert migrated["sources"]["whatson"]["options"]["categories"] == ["theatre"]
        assert "eventbrite_api_key" not in migrated
        assert "max_events" not in migrated

    def test_v1_run_and_dedup_sections(self):
        """Run settings move under run, dedup gets default weights."""
        migrated = migrate_config(dict(V1_CONFIG))

        assert migrated["run"] == {"concurrency": 2, "timeout_s": 900}
        assert migrated["deduplication"]["threshold"] == 0.85
        assert migrated["deduplication"]["weights"] == {"title": 0.5, "venue": 0.3, "date": 0.2}

    def test_missing_version_treated_as_v1(self):
        migrated = migrate_config({"sources": ["feverup"]})
        assert migrated["sources"]["feverup"]["options"] == {}


class TestValidateConfig:
    """Tests for validate_config."""

    def test_default_config_valid(self):
        assert validate_config(get_default_config()) == []

    def test_newer_version_rejected(self):
        errors = validate_config({"version": CURRENT_VERSION + 1})
        assert any("newer" in e for e in errors)

    def test_unknown_source(self):
        errors = validate_config({"version": 2, "sources": {"instagram": {}}})
        assert errors == ["Unknown source: instagram"]

    def test_bad_run_settings(self):
        errors = validate_config({"version": 2, "run": {"concurrency": 0, "timeout_s": -5}})
        assert len(errors) == 2

    def test_threshold_range(self):
        errors = validate_config({"version": 2, "deduplication": {"threshold": 1.5}})
        assert any("threshold" in e for e in errors)

    def test_weights_must_sum_to_one(self):
        errors = validate_config({
            "version": 2,
            "deduplication": {"weights": {"title": 0.5, "venue": 0.5, "date": 0.5}},
        })
        assert any("sum to 1.0" in e for e in errors)

    def test_weights_need_all_signals(self):
        errors = validate_config({"version": 2, "deduplication": {"weights": {"title": 1.0}}})
        assert any("missing" in e for e in errors)


class TestLoadConfig:
    """Tests for load_config."""

    def test_load_from_dict(self):
        """A v1 dict is migrated and typed."""
        config = load_config(dict(V1_CONFIG))

        assert isinstance(config, PipelineConfig)
        assert config.enabled_sources() == ["marriner", "eventbrite", "whatson"]
        assert config.run.concurrency == 2
        assert config.scrape_options("marriner").detail_fetch_delay_ms == 2000
        assert config.scrape_options("eventbrite").organizer_ids == ["111"]

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "pipeline.json"
        path.write_text(json.dumps(get_default_config()))

        config = load_config(path)

        assert "eventbrite" not in config.enabled_sources()
        assert config.run.timeout_s == 3600
        assert config.scrape_options("artscentre").max_detail_fetches == 40

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_validation_errors_raised(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config({"version": 2, "sources": {"instagram": {}}})
        assert "instagram" in str(exc_info.value)

    def test_bad_option_type(self):
        """Option values of the wrong type fail as ConfigError."""
        with pytest.raises(ConfigError):
            load_config({"version": 2, "sources": {"whatson": {"options": {"maxPages": "many"}}}})

    def test_politeness_folded_into_options(self):
        """A source's politeness block reaches its scrape options."""
        config = load_config({
            "version": 2,
            "sources": {"whatson": {
                "politeness": {"request_delay": {"min_ms": 3000, "max_ms": 4000}},
            }},
        })

        options = config.scrape_options("whatson")
        assert options.politeness.request_delay.min_ms == 3000

    def test_unconfigured_source_gets_defaults(self):
        config = load_config({"version": 2})
        assert config.scrape_options("feverup").max_events == 50
