"""Tests for category mapping."""

import pytest

from servers.event_ingest.categories import (
    CATEGORIES,
    OTHER,
    classify_text,
    find_subcategory,
    map_artscentre_category,
    map_by_keywords,
    map_eventbrite_category,
    map_marriner_category,
    map_ticketmaster_category,
    map_whatson_category,
    mentions,
)


class TestKeywordMatching:
    """Tests for word-prefix keyword matching."""

    def test_matches_word_start(self):
        """Keywords match at the start of a word."""
        assert mentions("modern art gallery", "art")
        assert mentions("artist talk", "art")

    def test_ignores_mid_word(self):
        """'art' inside 'party' is not a match."""
        assert not mentions("rooftop party", "art")
        assert not mentions("coldplay tribute", "play")

    def test_classify_defaults_to_other(self):
        """No keyword hits gives 'other'."""
        assert classify_text("Annual general meeting") == OTHER

    def test_find_subcategory(self):
        """Subcategory keywords are checked in order."""
        assert find_subcategory("music", "symphony orchestra gala") == "Classical & Orchestra"
        assert find_subcategory("sports", "knitting circle") is None


class TestSourceMappers:
    """Tests for per-source category mappers."""

    def test_ticketmaster_music(self):
        """Music segment with a rock genre."""
        assert map_ticketmaster_category("Music", "Rock", "Alternative Rock", "Band") == (
            "music", ["Rock & Alternative"]
        )

    def test_ticketmaster_sports_fallback_sub(self):
        """Unrecognised sport falls back to 'Other Sports'."""
        assert map_ticketmaster_category("Sports", "Darts", None, "World Darts") == (
            "sports", ["Other Sports"]
        )

    def test_ticketmaster_film(self):
        assert map_ticketmaster_category("Film", None, None, "Screening") == ("arts", ["Film & Cinema"])

    def test_eventbrite_performing_visual(self):
        """Visual arts under 'Performing & Visual Arts' go to arts."""
        category, _ = map_eventbrite_category("Performing & Visual Arts", "Visual Arts", "Gallery opening")
        assert category == "arts"

    def test_whatson_tags(self):
        """What's On tags map directly."""
        assert map_whatson_category("theatre", "A new play")[0] == "theatre"
        assert map_whatson_category("festivals", "Melbourne International Comedy Festival") == (
            "arts", ["Comedy Festival"]
        )
        assert map_whatson_category("markets", "Queen Vic night market") == (OTHER, ["Community Events"])

    @pytest.mark.parametrize("title,venue,expected", [
        ("Melbourne Symphony in Concert", "Regent Theatre", ("music", ["Classical & Orchestra"])),
        ("Jazz at the Forum", "Forum Melbourne", ("music", ["Jazz & Blues"])),
        ("Hannah Gadsby", "Comedy Theatre", ("theatre", ["Comedy Shows"])),
        ("Moulin Rouge! The Musical", "Regent Theatre", ("theatre", ["Musicals"])),
        ("The Mousetrap", "Comedy Theatre", ("theatre", ["Comedy Shows"])),
        ("Death of a Salesman", "Princess Theatre", ("theatre", ["Drama"])),
    ])
    def test_marriner(self, title, venue, expected):
        """Marriner shows are theatre unless obviously music."""
        assert map_marriner_category(title, venue) == expected

    def test_artscentre_url(self):
        """Arts Centre URL paths name the category."""
        url = "https://www.artscentremelbourne.com.au/whats-on/2025/classical-music/mso-gala"
        assert map_artscentre_category(url, "MSO Gala") == ("music", ["Classical & Orchestra"])

    def test_keyword_fallback(self):
        """Sources without categories use keywords."""
        category, subs = map_by_keywords("Kids circus spectacular", None)
        assert category == "family"
        assert subs == ["Kids Shows"]

    def test_subcategories_belong_to_category(self):
        """Every mapped subcategory is in the taxonomy."""
        category, subs = map_ticketmaster_category("Arts & Theatre", "Theatre", "Musical", "Wicked")
        assert set(subs) <= set(CATEGORIES[category]["subcategories"])
