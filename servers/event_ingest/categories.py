"""
Category taxonomy and per-source category mapping.

Sources describe categories in their own words (Ticketmaster segments,
Eventbrite categories, What's On tags, Arts Centre URL paths, or nothing at
all). Each mapper turns that into a canonical category plus an optional
subcategory using keyword matching; anything unrecognised lands in "other".
"""

import re
from typing import Optional

OTHER = "other"

# Canonical taxonomy
CATEGORIES = {
    "music": {
        "name": "Music",
        "subcategories": [
            "Rock & Alternative",
            "Pop & Electronic",
            "Hip Hop & R&B",
            "Jazz & Blues",
            "Classical & Orchestra",
            "Country & Folk",
            "Metal & Punk",
            "World Music",
        ],
    },
    "theatre": {
        "name": "Theatre",
        "subcategories": [
            "Musicals",
            "Drama",
            "Comedy Shows",
            "Ballet & Dance",
            "Opera",
            "Cabaret",
            "Shakespeare",
            "Experimental",
        ],
    },
    "sports": {
        "name": "Sports",
        "subcategories": [
            "AFL",
            "Cricket",
            "Soccer",
            "Basketball",
            "Tennis",
            "Rugby",
            "Motorsports",
            "Other Sports",
        ],
    },
    "arts": {
        "name": "Arts & Culture",
        "subcategories": [
            "Comedy Festival",
            "Film & Cinema",
            "Art Exhibitions",
            "Literary Events",
            "Cultural Festivals",
            "Markets & Fairs",
        ],
    },
    "family": {
        "name": "Family",
        "subcategories": [
            "Kids Shows",
            "Family Entertainment",
            "Educational",
            "Circus & Magic",
        ],
    },
    OTHER: {
        "name": "Other",
        "subcategories": [
            "Workshops",
            "Networking",
            "Wellness",
            "Community Events",
        ],
    },
}

# Ordered (keywords, subcategory) tables; first hit wins.
SUBCATEGORY_KEYWORDS: dict[str, list[tuple[tuple[str, ...], str]]] = {
    "music": [
        (("classical", "orchestra", "symphony", "concerto", "quartet"), "Classical & Orchestra"),
        (("jazz", "blues"), "Jazz & Blues"),
        (("metal", "punk"), "Metal & Punk"),
        (("rock", "alternative", "indie"), "Rock & Alternative"),
        (("hip hop", "hip-hop", "rap", "r&b", "rnb"), "Hip Hop & R&B"),
        (("pop", "electronic", "edm", "dance music", "dj"), "Pop & Electronic"),
        (("country", "folk"), "Country & Folk"),
        (("world", "latin", "reggae", "afro"), "World Music"),
    ],
    "theatre": [
        (("musical",), "Musicals"),
        (("opera",), "Opera"),
        (("ballet", "nutcracker", "dance"), "Ballet & Dance"),
        (("comedy", "comedian", "stand-up", "stand up"), "Comedy Shows"),
        (("cabaret", "burlesque"), "Cabaret"),
        (("shakespeare", "hamlet", "macbeth", "othello", "king lear", "romeo and juliet"), "Shakespeare"),
        (("experimental",), "Experimental"),
    ],
    "sports": [
        (("afl",), "AFL"),
        (("cricket",), "Cricket"),
        (("soccer", "football", "a-league"), "Soccer"),
        (("basketball", "nbl"), "Basketball"),
        (("tennis",), "Tennis"),
        (("rugby",), "Rugby"),
        (("motorsport", "racing", "f1", "grand prix"), "Motorsports"),
    ],
    "arts": [
        (("comedy festival",), "Comedy Festival"),
        (("film", "cinema", "screening"), "Film & Cinema"),
        (("exhibition", "gallery", "art show"), "Art Exhibitions"),
        (("book", "writers", "poetry", "literary"), "Literary Events"),
        (("festival",), "Cultural Festivals"),
        (("market", "fair"), "Markets & Fairs"),
    ],
    "family": [
        (("kids", "children", "junior"), "Kids Shows"),
        (("circus", "magic"), "Circus & Magic"),
        (("educational", "science", "museum"), "Educational"),
        (("family",), "Family Entertainment"),
    ],
    OTHER: [
        (("workshop", "class", "masterclass"), "Workshops"),
        (("networking", "meetup"), "Networking"),
        (("yoga", "wellness", "meditation"), "Wellness"),
    ],
}

# Keywords used to pick a category when the source gives no usable hint.
CATEGORY_KEYWORDS: dict[str, list[str]] = {
    "music": [
        "concert", "live music", "band", "orchestra", "symphony", "jazz",
        "gig", "dj", "choir", "candlelight", "tribute", "album",
    ],
    "theatre": [
        "theatre", "theater", "musical", "play", "opera", "ballet",
        "cabaret", "comedy", "drama", "stage",
    ],
    "sports": ["afl", "cricket", "soccer", "football", "tennis", "basketball", "rugby", "racing"],
    "arts": ["exhibition", "gallery", "film", "cinema", "festival", "art", "museum"],
    "family": ["kids", "children", "family", "circus", "magic"],
}

# Arts Centre Melbourne /whats-on/<path> fragments
ARTSCENTRE_URL_CATEGORIES: list[tuple[str, str, Optional[str]]] = [
    ("classical-music", "music", "Classical & Orchestra"),
    ("contemporary-music", "music", None),
    ("opera", "theatre", "Opera"),
    ("circus-and-magic", "family", "Circus & Magic"),
    ("comedy", "theatre", "Comedy Shows"),
    ("musical", "theatre", "Musicals"),
    ("dance", "theatre", "Ballet & Dance"),
    ("theatre", "theatre", None),
    ("kids-and-families", "family", None),
    ("exhibitions", "arts", "Art Exhibitions"),
    ("talks-and-ideas", "arts", "Literary Events"),
    ("festivals-and-series", "arts", "Cultural Festivals"),
]


MARRINER_MUSIC_KEYWORDS = [
    (("jazz", "blues"), "Jazz & Blues"),
    (("rock", "alternative"), "Rock & Alternative"),
    (("pop",), "Pop & Electronic"),
]


def mentions(text: str, keyword: str) -> bool:
    """True when ``keyword`` starts a word in ``text`` ("art" misses "party")."""
    return re.search(r"(?<![a-z0-9])" + re.escape(keyword), text) is not None


def get_subcategories(category: str) -> list[str]:
    return CATEGORIES.get(category, {}).get("subcategories", [])


def find_subcategory(category: str, text: str) -> Optional[str]:
    """Find the best subcategory of ``category`` mentioned in ``text``."""
    text = text.lower()

    for sub in get_subcategories(category):
        if sub.lower() in text:
            return sub

    for keywords, sub in SUBCATEGORY_KEYWORDS.get(category, []):
        if any(mentions(text, kw) for kw in keywords):
            return sub

    return None


def classify_text(text: str) -> str:
    """Keyword vote across categories; ``other`` when nothing matches."""
    combined = text.lower()
    scores = {
        category: sum(1 for kw in keywords if mentions(combined, kw))
        for category, keywords in CATEGORY_KEYWORDS.items()
    }
    best = max(scores, key=scores.get)
    return best if scores[best] > 0 else OTHER


def _result(category: str, text: str, fallback_sub: Optional[str] = None) -> tuple[str, list[str]]:
    sub = find_subcategory(category, text) or fallback_sub
    return category, [sub] if sub else []


def map_by_keywords(*texts: Optional[str]) -> tuple[str, list[str]]:
    """Fallback mapping for sources that publish no category at all."""
    combined = " ".join(t for t in texts if t)
    return _result(classify_text(combined), combined)


def map_ticketmaster_category(
    segment: Optional[str],
    genre: Optional[str],
    sub_genre: Optional[str],
    title: str,
) -> tuple[str, list[str]]:
    """Map a Ticketmaster segment/genre/subGenre classification."""
    seg = (segment or "").lower()
    combined = " ".join(t for t in (genre, sub_genre, title) if t).lower()

    if seg == "music":
        return _result("music", combined)
    if seg == "sports":
        return _result("sports", combined, "Other Sports")
    if "theatre" in seg or seg == "arts":
        return _result("theatre", combined, "Drama")
    if seg == "film":
        return "arts", ["Film & Cinema"]
    if "family" in seg or (genre or "").lower() == "family":
        return _result("family", combined, "Family Entertainment")
    if "comedy festival" in combined:
        return "arts", ["Comedy Festival"]
    return map_by_keywords(combined)


def map_eventbrite_category(
    category: Optional[str],
    subcategory: Optional[str],
    title: str,
) -> tuple[str, list[str]]:
    """Map an Eventbrite category name ("Music", "Performing & Visual Arts", ...)."""
    cat = (category or "").lower()
    combined = " ".join(t for t in (subcategory, title) if t).lower()

    if cat == "music":
        return _result("music", combined)
    if cat.startswith("performing"):
        if any(kw in combined for kw in ("exhibition", "gallery", "visual")):
            return _result("arts", combined)
        return _result("theatre", combined, "Drama")
    if cat.startswith("sports"):
        return _result("sports", combined, "Other Sports")
    if cat.startswith("film"):
        return "arts", ["Film & Cinema"]
    if cat.startswith("family"):
        return _result("family", combined, "Family Entertainment")
    if cat.startswith("health") or cat.startswith("business"):
        return _result(OTHER, combined)
    return map_by_keywords(combined)


def map_whatson_category(tag: Optional[str], title: str) -> tuple[str, list[str]]:
    """Map a What's On Melbourne category tag."""
    tag = (tag or "").lower()
    title_lower = title.lower()

    if tag == "theatre":
        return _result("theatre", title_lower, "Drama")
    if tag == "music":
        return _result("music", title_lower)
    if tag == "festivals":
        if "comedy" in title_lower:
            return "arts", ["Comedy Festival"]
        return "arts", ["Cultural Festivals"]
    if tag == "family":
        return _result("family", title_lower, "Family Entertainment")
    if tag in ("arts", "art"):
        return _result("arts", title_lower)
    return OTHER, ["Community Events"]


def map_marriner_category(title: str, venue: Optional[str]) -> tuple[str, list[str]]:
    """Marriner runs theatres; anything not obviously a concert is theatre."""
    title_lower = title.lower()

    if any(mentions(title_lower, kw) for kw in ("concert", "symphony", "orchestra")):
        return "music", ["Classical & Orchestra"]
    for keywords, sub in MARRINER_MUSIC_KEYWORDS:
        if any(mentions(title_lower, kw) for kw in keywords):
            return "music", [sub]

    if venue and "comedy" in venue.lower():
        return "theatre", [find_subcategory("theatre", title_lower) or "Comedy Shows"]
    return _result("theatre", title_lower, "Drama")


def map_artscentre_category(url: str, title: str) -> tuple[str, list[str]]:
    """Guess the category from the production URL path."""
    path = url.lower()
    for fragment, category, sub in ARTSCENTRE_URL_CATEGORIES:
        if fragment in path:
            if sub:
                return category, [sub]
            return _result(category, title)
    return map_by_keywords(title)
