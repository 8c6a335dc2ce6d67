"""Tests for the command-line entry point and logging setup."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import structlog

from servers.event_ingest.__main__ import build_parser, main
from servers.event_ingest.log import configure_logging
from servers.event_ingest.models import RunStats, SourceRunStats
from servers.event_ingest.orchestrator import IngestionOrchestrator


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.dry_run is False
        assert args.mongo_db == "events"

    def test_flags(self):
        args = build_parser().parse_args(["--dry-run", "--sources", "marriner,whatson", "--json-logs"])
        assert args.dry_run
        assert args.sources == "marriner,whatson"
        assert args.json_logs


class TestMain:
    """Tests for main()."""

    def test_needs_a_store(self):
        """Without --dry-run or --mongo-uri the run aborts with exit code 2."""
        assert main(["--sources", "marriner"]) == 2

    def test_bad_config_file(self, tmp_path):
        assert main(["--dry-run", "--config", str(tmp_path / "missing.json")]) == 2

    def test_dry_run_prints_report(self, capsys):
        """A successful run prints the JSON report and exits 0."""
        stats = RunStats(inserted=3, sources=[SourceRunStats(source="marriner")])

        with patch.object(IngestionOrchestrator, "run", new=AsyncMock(return_value=stats)) as run:
            code = main(["--dry-run", "--sources", "marriner, whatson"])

        assert code == 0
        sources, options = run.await_args.args
        assert sources == ["marriner", "whatson"]
        assert set(options) == {"marriner", "whatson"}
        report = json.loads(capsys.readouterr().out)
        assert report["inserted"] == 3

    def test_all_sources_failed(self, capsys):
        stats = RunStats(sources=[SourceRunStats(source="marriner", status="error")])

        with patch.object(IngestionOrchestrator, "run", new=AsyncMock(return_value=stats)):
            assert main(["--dry-run", "--sources", "marriner"]) == 1


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("LOUD")

    def test_json_lines(self, capsys):
        """JSON mode writes one JSON object per event with level and timestamp."""
        configure_logging("INFO", json_logs=True)

        structlog.get_logger().info("run_started", sources=["marriner"])

        line = capsys.readouterr().err.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "run_started"
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_level_filters(self, capsys):
        configure_logging("WARNING", json_logs=True)

        structlog.get_logger().info("quiet")

        assert capsys.readouterr().err == ""
