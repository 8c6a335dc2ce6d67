"""Health monitoring for event sources across runs."""

from typing import Any, Optional

import structlog

from ..models import SourceRunStats, utcnow

logger = structlog.get_logger()


class HealthMonitor:
    """Track per-source outcomes across orchestrator runs.

    A source is unhealthy after a failed or cancelled run and healthy
    again after its next successful one. Runs where most fetched records
    failed to normalise are flagged as degraded, which usually means the
    source changed its markup.
    """

    def __init__(self, degraded_ratio: float = 0.5):
        """Initialize health monitor.

        Args:
            degraded_ratio: Mapping-error share of fetched records above
                which a successful run is reported as degraded
        """
        self.degraded_ratio = degraded_ratio
        self.status: dict[str, dict[str, Any]] = {}

    def record(self, stats: SourceRunStats) -> None:
        """Record one source's run from its stats."""
        if stats.status == "success":
            self.record_success(stats.source, stats.normalised, stats)
        else:
            self.record_failure(stats.source, stats.error_message or stats.status)

    def record_success(
        self, source: str, event_count: int, stats: Optional[SourceRunStats] = None
    ) -> None:
        degraded = False
        if stats is not None and stats.fetched:
            degraded = stats.mapping_errors / stats.fetched > self.degraded_ratio

        self.status[source] = {
            "healthy": True,
            "degraded": degraded,
            "last_check": utcnow().isoformat(),
            "event_count": event_count,
            "consecutive_failures": 0,
            "last_error": None,
        }
        if degraded:
            logger.warning(
                "source_degraded",
                source=source,
                fetched=stats.fetched,
                mapping_errors=stats.mapping_errors,
            )
        else:
            logger.debug("source_healthy", source=source, event_count=event_count)

    def record_failure(self, source: str, error: str) -> None:
        consecutive = self.status.get(source, {}).get("consecutive_failures", 0) + 1

        self.status[source] = {
            "healthy": False,
            "degraded": False,
            "last_check": utcnow().isoformat(),
            "event_count": 0,
            "consecutive_failures": consecutive,
            "last_error": error,
        }
        logger.warning(
            "source_unhealthy",
            source=source,
            consecutive_failures=consecutive,
            error=error,
        )

    def is_healthy(self, source: str) -> bool:
        """True if the source's last run succeeded, or it has never run."""
        return self.status.get(source, {}).get("healthy", True)

    def unhealthy_sources(self) -> list[str]:
        return [name for name, status in self.status.items() if not status["healthy"]]

    def get_status(self) -> dict[str, Any]:
        healthy = sum(1 for s in self.status.values() if s["healthy"])
        return {
            "timestamp": utcnow().isoformat(),
            "summary": {
                "healthy": healthy,
                "unhealthy": len(self.status) - healthy,
                "total": len(self.status),
            },
            "sources": self.status,
        }
