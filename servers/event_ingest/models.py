"""
Pydantic models for the ingestion pipeline.

These models define the core data types passed between stages:
- CanonicalEvent: the single normalised shape every adapter produces
- DuplicatePair / ExclusionRecord: deduplication decisions
- SourceRunStats / RunStats: per-source and per-run counters
- ScrapeOptions: per-source knobs handed to adapters
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Union
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .politeness import PolitenessConfig

# Naive timestamps from sources are local to the catalogue's city.
DEFAULT_TIMEZONE = ZoneInfo("Australia/Melbourne")

PLACEHOLDER_DESCRIPTION = "No description available"

# Document fields compared on upsert; a change in any of them bumps lastUpdated.
MUTABLE_FIELDS = ("title", "startDate", "description", "priceMin", "priceMax", "isFree")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Source(str, Enum):
    """Known event sources."""

    TICKETMASTER = "ticketmaster"
    EVENTBRITE = "eventbrite"
    ARTSCENTRE = "artscentre"
    MARRINER = "marriner"
    FEVERUP = "feverup"
    WHATSON = "whatson"


class Venue(BaseModel):
    """Where an event takes place."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: Optional[str] = None
    suburb: Optional[str] = None


class CanonicalEvent(BaseModel):
    """A single event in the shape every source is normalised into."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=True,
    )

    # Core event info
    title: str = Field(min_length=1)
    description: str = PLACEHOLDER_DESCRIPTION

    # Classification
    category: str = "other"
    subcategories: list[str] = Field(default_factory=list)

    # Timing
    start_date: datetime
    end_date: Optional[datetime] = None

    # Location
    venue: Venue

    # Pricing
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    is_free: bool = False

    # Links
    booking_url: str
    image_url: Optional[str] = None

    # Source tracking
    source: Source
    source_id: str = Field(min_length=1)

    # Metadata
    scraped_at: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("title", "source_id", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("start_date", "end_date", "scraped_at", "last_updated")
    @classmethod
    def _aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=DEFAULT_TIMEZONE)
        return value

    @field_validator("booking_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"booking URL must be an absolute http(s) URL: {value!r}")
        return value

    @model_validator(mode="after")
    def _end_after_start(self) -> "CanonicalEvent":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date is before start_date")
        return self

    @property
    def natural_key(self) -> tuple[str, str]:
        """Persistent identity: (source, sourceId)."""
        return (self.source, self.source_id)

    @property
    def batch_id(self) -> str:
        return f"{self.source}:{self.source_id}"

    def to_document(self) -> dict:
        """Storage document with camelCase keys and absent optionals omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class BatchEvent(BaseModel):
    """An event paired with its id inside one deduplication pass."""

    model_config = ConfigDict(frozen=True)

    batch_id: str
    event: CanonicalEvent

    @classmethod
    def wrap(cls, events: list[CanonicalEvent]) -> list["BatchEvent"]:
        return [cls(batch_id=e.batch_id, event=e) for e in events]


class MatchReason(str, Enum):
    """Signals that contributed to a duplicate match."""

    TITLE = "title"
    DATE = "date"
    VENUE = "venue"


class DuplicatePair(BaseModel):
    """A scored pair of events from different sources."""

    event1_id: str
    event2_id: str
    similarity_score: float
    should_merge: bool
    reasons: list[MatchReason] = Field(default_factory=list)
    title_similarity: float = 0.0
    venue_similarity: float = 0.0
    date_similarity: float = 0.0


class ExclusionRecord(BaseModel):
    """Records why an event was dropped from the surviving set."""

    excluded_id: str
    kept_id: str
    similarity_score: float
    reason: str


class SourceRunStats(BaseModel):
    """Counters for one adapter run."""

    source: str
    status: Literal["success", "error", "cancelled"] = "success"
    fetched: int = 0
    normalised: int = 0
    mapping_errors: int = 0
    detail_errors: int = 0
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None


class SourceFailure(BaseModel):
    """A source-level failure recorded in the run report."""

    source: str
    stage: Literal["config", "fetch", "scrape", "storage", "cancelled"]
    error_type: str
    message: str


class RunStats(BaseModel):
    """Report returned by one orchestrator run."""

    fetched: int = 0
    normalised: int = 0
    duplicate_pairs_found: int = 0
    merged: int = 0
    inserted: int = 0
    updated: int = 0
    skipped_unchanged: int = 0
    skipped_error: int = 0
    duration: float = 0.0  # seconds
    cancelled: bool = False

    sources: list[SourceRunStats] = Field(default_factory=list)
    failures: list[SourceFailure] = Field(default_factory=list)
    exclusions: list[ExclusionRecord] = Field(default_factory=list)
    duplicate_pairs: list[DuplicatePair] = Field(default_factory=list)

    @property
    def failed_sources(self) -> list[str]:
        seen: list[str] = []
        for failure in self.failures:
            if failure.source not in seen:
                seen.append(failure.source)
        return seen

    @property
    def succeeded(self) -> bool:
        """True when at least one source completed."""
        return any(s.status == "success" for s in self.sources)


class ScrapeOptions(BaseModel):
    """Per-source scrape knobs.

    Accepts both snake_case and camelCase keys so configs written for the
    JSON layout (``maxEvents``, ``detailFetchDelay``) load unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    max_events: Union[int, float] = 50  # float("inf") means unbounded
    detail_fetch_delay_ms: Optional[int] = Field(default=None, alias="detailFetchDelay")
    use_browser: Optional[bool] = None  # None means the source's own default
    fetch_details: bool = True
    max_shows: Union[int, float] = 100
    max_detail_fetches: Union[int, float] = 100
    max_pages: int = 5
    categories: list[str] = Field(default_factory=lambda: ["theatre", "music"])
    city: str = "Melbourne"
    country_code: str = "AU"
    organizer_ids: list[str] = Field(default_factory=list)
    api_key: Optional[str] = None
    politeness: Optional[PolitenessConfig] = None
