"""
Cross-source fuzzy deduplication.

Uses weighted similarity matching:
- Title: 50% weight
- Venue: 30% weight
- Date: 20% weight

A pair merges when the weighted score reaches 0.80 and the titles alone
are at least 0.75 similar. Only events from different sources are
compared; pairs more than 14 days apart are never scored.
"""

import re
from datetime import datetime, timedelta
from itertools import combinations
from typing import Literal, Optional

import structlog
from rapidfuzz import fuzz

from .models import (
    PLACEHOLDER_DESCRIPTION,
    BatchEvent,
    CanonicalEvent,
    DuplicatePair,
    ExclusionRecord,
    MatchReason,
    Venue,
)
from .normalize import VENUE_TBA

logger = structlog.get_logger()


# Configurable weights
WEIGHTS = {
    "title": 0.50,
    "venue": 0.30,
    "date": 0.20,
}

# Composite score at which a pair is merged
MERGE_THRESHOLD = 0.80

# Titles must clear this on their own before a pair can merge
MIN_TITLE_SIMILARITY = 0.75

# Non-merging pairs at or above this score are still reported
REPORT_THRESHOLD = 0.60

# Per-signal score above which the signal is listed as a match reason
REASON_THRESHOLD = 0.75

CONTAINMENT_SCORE = 0.95

STOP_WORDS = {
    "the", "a", "an", "and", "or", "at", "to", "for", "of", "in", "on",
    "live", "presents", "featuring", "feat", "ft", "show", "tour",
}

VENUE_SUFFIXES = [
    "theatre", "theater", "centre", "center", "arena", "stadium",
    "hall", "auditorium", "melbourne", "hotel",
]

# Box office first, aggregators last
SOURCE_PRIORITY = {
    "marriner": 6,
    "artscentre": 5,
    "ticketmaster": 4,
    "eventbrite": 3,
    "whatson": 2,
    "feverup": 1,
}


def normalize_title(text: Optional[str]) -> str:
    """Lowercase, drop punctuation and stop words."""
    if not text:
        return ""

    text = text.lower().replace("'", "").replace("’", "")
    text = re.sub(r"[^\w\s]", " ", text)
    words = [w for w in text.split() if w not in STOP_WORDS]
    return " ".join(words)


def normalize_venue(name: Optional[str]) -> str:
    """Normalize venue name for comparison."""
    if not name or name == VENUE_TBA:
        return ""

    name = normalize_title(name)
    words = name.split()
    while words and words[-1] in VENUE_SUFFIXES:
        words.pop()
    return " ".join(words)


def _text_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if re.search(r"\b" + re.escape(shorter) + r"\b", longer):
        return CONTAINMENT_SCORE

    return fuzz.token_sort_ratio(a, b) / 100


def calculate_title_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    """Calculate title similarity (0-1)."""
    return _text_similarity(normalize_title(e1.title), normalize_title(e2.title))


def calculate_venue_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> float:
    """Calculate venue similarity (0-1). Unknown venues never match."""
    return _text_similarity(normalize_venue(e1.venue.name), normalize_venue(e2.venue.name))


def _span(event: CanonicalEvent) -> tuple[datetime, datetime]:
    start = event.start_date
    return start, event.end_date or start


def calculate_date_similarity(e1: CanonicalEvent, e2: CanonicalEvent) -> Optional[float]:
    """Calculate date similarity (0-1), or None when too far apart to compare."""
    start1, end1 = _span(e1)
    start2, end2 = _span(e2)

    if start1 <= end2 and start2 <= end1:
        return 1.0
    if start1.date() == start2.date():
        return 1.0

    gap = start2 - end1 if end1 < start2 else start1 - end2
    if gap <= timedelta(days=7):
        return 0.8
    if gap <= timedelta(days=14):
        return 0.5
    return None


def calculate_similarity(
    e1: CanonicalEvent,
    e2: CanonicalEvent,
    weights: Optional[dict[str, float]] = None,
) -> Optional[tuple[float, float, float, float]]:
    """
    Calculate weighted similarity between two events.

    Returns: (total_similarity, title_sim, venue_sim, date_sim), or None
    when the dates are too far apart for the pair to be a duplicate.
    """
    weights = weights or WEIGHTS

    date_sim = calculate_date_similarity(e1, e2)
    if date_sim is None:
        return None

    title_sim = calculate_title_similarity(e1, e2)
    venue_sim = calculate_venue_similarity(e1, e2)

    total = (
        weights["title"] * title_sim +
        weights["venue"] * venue_sim +
        weights["date"] * date_sim
    )

    return (round(total, 4), title_sim, venue_sim, date_sim)


def _reasons(title_sim: float, venue_sim: float, date_sim: float) -> list[MatchReason]:
    reasons = []
    if title_sim >= REASON_THRESHOLD:
        reasons.append(MatchReason.TITLE)
    if date_sim >= REASON_THRESHOLD:
        reasons.append(MatchReason.DATE)
    if venue_sim >= REASON_THRESHOLD:
        reasons.append(MatchReason.VENUE)
    return reasons


def find_duplicates(
    batch: list[BatchEvent],
    threshold: float = MERGE_THRESHOLD,
    weights: Optional[dict[str, float]] = None,
) -> list[DuplicatePair]:
    """
    Score every cross-source pair in the batch.

    Args:
        batch: Events of one run, each with a unique batch id
        threshold: Composite score needed to merge
        weights: Optional custom weights dict

    Returns:
        Merge candidates and weaker reportable pairs, sorted by
        (event1_id, event2_id) with event1_id < event2_id. The result does
        not depend on batch order.
    """
    ordered = sorted(batch, key=lambda b: b.batch_id)
    pairs: list[DuplicatePair] = []

    for first, second in combinations(ordered, 2):
        if first.event.source == second.event.source:
            continue

        scored = calculate_similarity(first.event, second.event, weights)
        if scored is None:
            continue

        total, title_sim, venue_sim, date_sim = scored
        should_merge = total >= threshold and title_sim >= MIN_TITLE_SIMILARITY
        if not should_merge and total < REPORT_THRESHOLD:
            continue

        pairs.append(DuplicatePair(
            event1_id=first.batch_id,
            event2_id=second.batch_id,
            similarity_score=total,
            should_merge=should_merge,
            reasons=_reasons(title_sim, venue_sim, date_sim),
            title_similarity=title_sim,
            venue_similarity=venue_sim,
            date_similarity=date_sim,
        ))

    return pairs


def _richness(e: CanonicalEvent) -> int:
    score = 0
    if e.price_min is not None or e.price_max is not None:
        score += 1
    if e.image_url:
        score += 1
    if e.description != PLACEHOLDER_DESCRIPTION:
        score += 1
    if e.venue.address:
        score += 1
    return score


def _description_length(e: CanonicalEvent) -> int:
    return 0 if e.description == PLACEHOLDER_DESCRIPTION else len(e.description)


def select_primary_event(e1: CanonicalEvent, e2: CanonicalEvent) -> Literal["event1", "event2"]:
    """
    Choose which event survives a merge.

    Priority:
    1. Richer data (price, image, real description, address)
    2. Longer description
    3. Source priority (box office over ticketing over aggregator)
    4. Lower natural key, so the choice never depends on argument order
    """
    def rank(e: CanonicalEvent) -> tuple[int, int, int]:
        return (_richness(e), _description_length(e), SOURCE_PRIORITY.get(e.source, 0))

    r1, r2 = rank(e1), rank(e2)
    if r1 != r2:
        return "event1" if r1 > r2 else "event2"
    return "event1" if e1.natural_key <= e2.natural_key else "event2"


def build_exclusions(
    pairs: list[DuplicatePair],
    events: dict[str, CanonicalEvent],
) -> dict[str, ExclusionRecord]:
    """
    Decide which events to drop for the merge pairs.

    The loser of every merge pair is excluded, including pairs that touch
    an event already excluded by another pair. Pairs are visited strongest
    first and an id keeps the record of the first pair that excluded it,
    so the result does not depend on pair order. The highest ranked event
    of a group of matches never loses and always survives.

    Returns:
        Mapping of excluded batch id to its ExclusionRecord
    """
    exclusions: dict[str, ExclusionRecord] = {}
    merging = sorted(
        (p for p in pairs if p.should_merge),
        key=lambda p: (-p.similarity_score, p.event1_id, p.event2_id),
    )

    for pair in merging:
        e1, e2 = events[pair.event1_id], events[pair.event2_id]
        if select_primary_event(e1, e2) == "event1":
            kept, excluded = pair.event1_id, pair.event2_id
        else:
            kept, excluded = pair.event2_id, pair.event1_id

        if excluded in exclusions:
            continue
        exclusions[excluded] = ExclusionRecord(
            excluded_id=excluded,
            kept_id=kept,
            similarity_score=pair.similarity_score,
            reason=(
                f"Duplicate of '{events[kept].title}' ({events[kept].source}) "
                f"matched on {', '.join(r.value for r in pair.reasons) or 'score'}"
            ),
        )
        logger.debug(
            "duplicate_excluded",
            excluded=excluded,
            kept=kept,
            score=pair.similarity_score,
        )

    return exclusions


def _longer_description(primary: str, secondary: str) -> str:
    if primary == PLACEHOLDER_DESCRIPTION:
        return secondary
    if secondary == PLACEHOLDER_DESCRIPTION:
        return primary
    return secondary if len(secondary) > len(primary) else primary


def merge_events(primary: CanonicalEvent, secondary: CanonicalEvent) -> CanonicalEvent:
    """
    Fill gaps in the surviving event from a duplicate it replaced.

    Identity, title, dates and category stay the primary's. The secondary
    contributes a longer description, a missing image, its price range
    when the primary has none, an end date, and venue details.
    """
    update: dict = {
        "description": _longer_description(primary.description, secondary.description),
        "image_url": primary.image_url or secondary.image_url,
    }

    if primary.price_min is None and primary.price_max is None and (
        secondary.price_min is not None or secondary.price_max is not None
    ):
        update.update(
            price_min=secondary.price_min,
            price_max=secondary.price_max,
            is_free=False,
        )

    if primary.end_date is None and secondary.end_date and secondary.end_date >= primary.start_date:
        update["end_date"] = secondary.end_date

    name = primary.venue.name
    if name == VENUE_TBA or (
        secondary.venue.name != VENUE_TBA and len(secondary.venue.name) > len(name)
    ):
        name = secondary.venue.name
    update["venue"] = Venue(
        name=name,
        address=primary.venue.address or secondary.venue.address,
        suburb=primary.venue.suburb or secondary.venue.suburb,
    )

    return primary.model_copy(update=update)


def merge_survivors(
    events: dict[str, CanonicalEvent],
    exclusions: dict[str, ExclusionRecord],
) -> list[CanonicalEvent]:
    """
    Return the surviving events, each merged with the duplicates it absorbed.

    An excluded event is folded into the survivor at the end of its
    kept_id chain, strongest exclusion first. Survivors keep the order of
    ``events``.
    """
    def survivor_of(batch_id: str) -> str:
        while batch_id in exclusions:
            batch_id = exclusions[batch_id].kept_id
        return batch_id

    merged = {bid: e for bid, e in events.items() if bid not in exclusions}
    ordered = sorted(exclusions.values(), key=lambda r: (-r.similarity_score, r.excluded_id))
    for record in ordered:
        root = survivor_of(record.kept_id)
        merged[root] = merge_events(merged[root], events[record.excluded_id])

    return list(merged.values())
