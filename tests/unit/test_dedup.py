"""Tests for cross-source deduplication."""

from datetime import datetime, timedelta

import pytest

from servers.event_ingest.dedup import (
    MERGE_THRESHOLD,
    WEIGHTS,
    build_exclusions,
    calculate_date_similarity,
    calculate_similarity,
    calculate_venue_similarity,
    find_duplicates,
    merge_events,
    merge_survivors,
    normalize_title,
    normalize_venue,
    select_primary_event,
)
from servers.event_ingest.models import DEFAULT_TIMEZONE, PLACEHOLDER_DESCRIPTION, BatchEvent, MatchReason, Venue
from servers.event_ingest.normalize import VENUE_TBA


def by_id(events):
    return {e.batch_id: e for e in events}


class TestNormalization:
    """Tests for title and venue normalisation."""

    def test_title_drops_punctuation_and_stop_words(self):
        """Punctuation and filler words are removed."""
        assert normalize_title("The Phantom of the Opera — LIVE!") == "phantom opera"

    def test_title_apostrophes_joined(self):
        """Apostrophes do not split words."""
        assert normalize_title("Her Majesty's") == "her majestys"

    def test_none_title(self):
        assert normalize_title(None) == ""

    def test_venue_suffixes_stripped(self):
        """Generic venue words are dropped from the end."""
        assert normalize_venue("Her Majesty's Theatre") == "her majestys"
        assert normalize_venue("Forum Melbourne") == "forum"

    def test_tba_venue_is_empty(self):
        assert normalize_venue(VENUE_TBA) == ""


class TestWeights:
    """Tests for similarity weights configuration."""

    def test_weights_sum_to_one(self):
        """Weights should sum to 1.0 for proper scoring."""
        assert abs(sum(WEIGHTS.values()) - 1.0) < 0.001

    def test_title_weighted_highest(self):
        assert WEIGHTS["title"] > WEIGHTS["venue"] > WEIGHTS["date"]


class TestSimilarity:
    """Tests for pairwise similarity."""

    def test_hamlet_scores(self, hamlet_pair):
        """The Hamlet listings clear the merge threshold."""
        total, title_sim, venue_sim, date_sim = calculate_similarity(*hamlet_pair)
        assert title_sim == pytest.approx(0.95)
        assert venue_sim == 1.0
        assert date_sim == 1.0
        assert total == pytest.approx(0.975)
        assert total >= MERGE_THRESHOLD

    def test_tba_venues_never_match(self, make_event):
        """Two unknown venues give no venue similarity."""
        e1 = make_event(venue=VENUE_TBA)
        e2 = make_event(venue=VENUE_TBA, source="whatson")
        assert calculate_venue_similarity(e1, e2) == 0.0

    def test_date_bands(self, make_event):
        """Same day 1.0, within a week 0.8, two weeks 0.5, further None."""
        base = make_event()
        start = base.start_date

        def shifted(days):
            return make_event(start_date=start + timedelta(days=days))

        assert calculate_date_similarity(base, shifted(0)) == 1.0
        assert calculate_date_similarity(base, shifted(5)) == 0.8
        assert calculate_date_similarity(base, shifted(12)) == 0.5
        assert calculate_date_similarity(base, shifted(30)) is None

    def test_overlapping_season(self, make_event):
        """A single date inside another listing's run counts as the same date."""
        season = make_event(
            start_date=datetime(2025, 11, 1, 12, tzinfo=DEFAULT_TIMEZONE),
            end_date=datetime(2025, 12, 31, 12, tzinfo=DEFAULT_TIMEZONE),
        )
        night = make_event(start_date=datetime(2025, 12, 5, 19, 30, tzinfo=DEFAULT_TIMEZONE))
        assert calculate_date_similarity(season, night) == 1.0

    def test_far_apart_not_scored(self, make_event):
        """Pairs more than two weeks apart are not compared."""
        e1 = make_event()
        e2 = make_event(source="ticketmaster", start_date=e1.start_date + timedelta(days=60))
        assert calculate_similarity(e1, e2) is None


class TestFindDuplicates:
    """Tests for batch duplicate detection."""

    def test_hamlet_merges(self, hamlet_pair):
        """The Hamlet pair is a merge candidate with all three reasons."""
        pairs = find_duplicates(BatchEvent.wrap(list(hamlet_pair)))
        assert len(pairs) == 1
        pair = pairs[0]
        assert pair.should_merge
        assert pair.event1_id == "marriner:hamlet"
        assert pair.event2_id == "ticketmaster:G5vYZ9hamlet"
        assert set(pair.reasons) == {MatchReason.TITLE, MatchReason.VENUE, MatchReason.DATE}

    def test_same_source_never_paired(self, make_event):
        """Two listings from one source are not duplicates of each other."""
        e1 = make_event(source_id="hamlet-matinee")
        e2 = make_event(source_id="hamlet-evening")
        assert find_duplicates(BatchEvent.wrap([e1, e2])) == []

    def test_order_independent(self, hamlet_pair):
        """[A, B] and [B, A] give the same pairs."""
        a, b = hamlet_pair
        assert find_duplicates(BatchEvent.wrap([a, b])) == find_duplicates(BatchEvent.wrap([b, a]))

    def test_different_events_same_venue_not_merged(self, make_event):
        """Same venue and night but different titles do not merge."""
        e1 = make_event(title="Hamlet")
        e2 = make_event(title="Les Misérables", source="ticketmaster", source_id="LM1")
        pairs = find_duplicates(BatchEvent.wrap([e1, e2]))
        assert all(not p.should_merge for p in pairs)

    def test_title_floor_blocks_merge(self, make_event):
        """A high composite score cannot merge clearly different titles."""
        e1 = make_event(title="Hamlet")
        e2 = make_event(title="Macbeth", source="whatson", source_id="macbeth")
        pairs = find_duplicates(BatchEvent.wrap([e1, e2]), threshold=0.5)
        assert all(not p.should_merge for p in pairs)


class TestPrimarySelection:
    """Tests for choosing which duplicate survives."""

    def test_richer_event_kept(self, hamlet_pair):
        """The listing with prices wins over the bare one."""
        marriner, ticketmaster = hamlet_pair
        assert select_primary_event(marriner, ticketmaster) == "event2"
        assert select_primary_event(ticketmaster, marriner) == "event1"

    def test_source_priority_breaks_ties(self, make_event):
        """With equal data the box office listing wins."""
        marriner = make_event()
        feverup = make_event(source="feverup", source_id="1")
        assert select_primary_event(feverup, marriner) == "event2"

    def test_deterministic_when_identical(self, make_event):
        """Identical data from one source falls back to the natural key."""
        e1 = make_event(source_id="a")
        e2 = make_event(source_id="b")
        assert select_primary_event(e1, e2) == "event1"
        assert select_primary_event(e2, e1) == "event2"


class TestBuildExclusions:
    """Tests for applying merge decisions."""

    def test_hamlet_excludes_one(self, hamlet_pair):
        """Exactly one Hamlet listing is excluded."""
        events = list(hamlet_pair)
        exclusions = build_exclusions(find_duplicates(BatchEvent.wrap(events)), by_id(events))

        assert list(exclusions) == ["marriner:hamlet"]
        record = exclusions["marriner:hamlet"]
        assert record.kept_id == "ticketmaster:G5vYZ9hamlet"
        assert record.similarity_score == pytest.approx(0.975)

    def test_chain_keeps_one_survivor_per_group(self, make_event):
        """Three listings of one show leave exactly one survivor."""
        marriner = make_event()
        ticketmaster = make_event(
            source="ticketmaster", source_id="T1", price_min=79.0,
            image_url="https://img.example.com/hamlet.jpg",
        )
        whatson = make_event(source="whatson", source_id="hamlet", price_min=60.0)
        events = [marriner, ticketmaster, whatson]

        exclusions = build_exclusions(find_duplicates(BatchEvent.wrap(events)), by_id(events))

        survivors = [e.batch_id for e in events if e.batch_id not in exclusions]
        assert survivors == ["ticketmaster:T1"]

    def test_non_merging_pairs_ignored(self, make_event):
        """Reported-only pairs exclude nothing."""
        e1 = make_event(title="Hamlet")
        e2 = make_event(title="Hamlet Retold", source="whatson", source_id="x", venue="Fortyfivedownstairs")
        events = [e1, e2]
        pairs = find_duplicates(BatchEvent.wrap(events))
        assert build_exclusions([p for p in pairs if not p.should_merge], by_id(events)) == {}

    def test_venue_object_identity_irrelevant(self, make_event):
        """Venues compare by name only."""
        e1 = make_event(venue=Venue(name="Regent Theatre", address="191 Collins St"))
        e2 = make_event(venue=Venue(name="Regent Theatre"), source="whatson", source_id="h")
        assert calculate_venue_similarity(e1, e2) == 1.0

    def test_loser_of_every_pair_excluded(self, make_event):
        """A chain whose ends never meet still leaves only the strongest event.

        Marriner matches the Ticketmaster season, which matches a What's On
        listing on its closing night. The two ends are too far apart to be
        compared, yet the What's On listing loses to Ticketmaster.
        """
        marriner = make_event(source_id="a")
        ticketmaster = make_event(
            source="ticketmaster", source_id="b",
            end_date=datetime(2025, 11, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE),
        )
        whatson = make_event(
            source="whatson", source_id="c",
            start_date=datetime(2025, 11, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE),
        )
        events = [marriner, ticketmaster, whatson]
        pairs = find_duplicates(BatchEvent.wrap(events))
        assert calculate_similarity(marriner, whatson) is None

        exclusions = build_exclusions(pairs, by_id(events))

        assert set(exclusions) == {"ticketmaster:b", "whatson:c"}
        assert exclusions["whatson:c"].kept_id == "ticketmaster:b"
        assert build_exclusions(list(reversed(pairs)), by_id(events)) == exclusions


class TestMergeEvents:
    """Tests for folding a duplicate into its survivor."""

    def test_fills_missing_price_and_image(self, hamlet_pair):
        """The survivor takes the duplicate's price range and image when it has none."""
        marriner, ticketmaster = hamlet_pair
        ticketmaster = ticketmaster.model_copy(update={"image_url": "https://img.example.com/hamlet.jpg"})

        merged = merge_events(marriner, ticketmaster)

        assert merged.natural_key == ("marriner", "hamlet")
        assert (merged.price_min, merged.price_max, merged.is_free) == (79.0, 189.0, False)
        assert merged.image_url == "https://img.example.com/hamlet.jpg"

    def test_primary_values_win(self, make_event):
        """Fields the survivor already has are kept."""
        primary = make_event(price_min=65.0, price_max=65.0, image_url="https://marrinergroup.com.au/hamlet.jpg")
        secondary = make_event(
            source="whatson", source_id="hamlet", price_min=20.0, price_max=40.0,
            image_url="https://whatson.example.com/hamlet.jpg",
        )

        merged = merge_events(primary, secondary)

        assert (merged.price_min, merged.price_max) == (65.0, 65.0)
        assert merged.image_url == "https://marrinergroup.com.au/hamlet.jpg"

    def test_longer_description_and_venue_details(self, make_event):
        """The longer real description, end date and venue address are taken over."""
        primary = make_event(
            description=PLACEHOLDER_DESCRIPTION,
            venue=Venue(name="Her Majestys"),
        )
        secondary = make_event(
            source="ticketmaster", source_id="T1",
            description="A bold new staging of Shakespeare's tragedy",
            end_date=datetime(2025, 12, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE),
            venue=Venue(name="Her Majesty's Theatre", address="219 Exhibition St, Melbourne VIC 3000", suburb="Melbourne"),
        )

        merged = merge_events(primary, secondary)

        assert merged.description == "A bold new staging of Shakespeare's tragedy"
        assert merged.end_date == datetime(2025, 12, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE)
        assert merged.venue == Venue(
            name="Her Majesty's Theatre", address="219 Exhibition St, Melbourne VIC 3000", suburb="Melbourne",
        )

    def test_tba_venue_replaced(self, make_event):
        primary = make_event(venue=VENUE_TBA)
        secondary = make_event(source="whatson", source_id="h", venue="Arts Centre Melbourne")
        assert merge_events(primary, secondary).venue.name == "Arts Centre Melbourne"

    def test_survivors_absorb_chain(self, make_event):
        """Events excluded through a chain are folded into the final survivor."""
        marriner = make_event(source_id="a")
        ticketmaster = make_event(
            source="ticketmaster", source_id="b",
            end_date=datetime(2025, 11, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE),
        )
        whatson = make_event(
            source="whatson", source_id="c",
            start_date=datetime(2025, 11, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE),
            venue=Venue(
                name="Her Majesty's Theatre",
                address="219 Exhibition St, Melbourne VIC 3000",
                suburb="Melbourne",
            ),
        )
        events = by_id([marriner, ticketmaster, whatson])
        exclusions = build_exclusions(find_duplicates(BatchEvent.wrap(list(events.values()))), events)

        [survivor] = merge_survivors(events, exclusions)

        assert survivor.batch_id == "marriner:a"
        assert survivor.venue.suburb == "Melbourne"
        assert survivor.end_date == datetime(2025, 11, 20, 19, 30, tzinfo=DEFAULT_TIMEZONE)
