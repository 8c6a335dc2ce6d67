"""
Normalisers: raw per-source records to CanonicalEvent.

Pure functions, no I/O. One normaliser per raw variant; ``normalize``
dispatches on the record type.

Rules shared by every source:
- timestamps are timezone-aware; naive values are read as Melbourne time
- date-only values are set to midday local time
- year-less dates ("5 May") roll forward to next year once they have passed
- an end date that cannot be parsed or precedes the start is dropped
- missing optional fields are None, never "", except description which
  falls back to PLACEHOLDER_DESCRIPTION
- MappingError when title, startDate, bookingUrl or sourceId cannot be
  derived, or when price text hints at a paid ticket without an amount
"""

import re
from datetime import datetime, time, timedelta
from typing import Callable, NamedTuple, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from .categories import (
    map_artscentre_category,
    map_by_keywords,
    map_eventbrite_category,
    map_marriner_category,
    map_ticketmaster_category,
    map_whatson_category,
)
from .errors import MappingError
from .models import (
    DEFAULT_TIMEZONE,
    PLACEHOLDER_DESCRIPTION,
    CanonicalEvent,
    Source,
    Venue,
    utcnow,
)
from .raw import (
    RawArtsCentrePage,
    RawEventbriteRecord,
    RawFeverUpEvent,
    RawMarrinerShow,
    RawTicketmasterRecord,
    RawWhatsOnListing,
)

VENUE_TBA = "Venue TBA"
DEFAULT_TIME = time(12, 0)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
RANGE_SPLIT_RE = re.compile(r"\s+(?:[-–—]|to|until)\s+|\s*[–—]\s*|(?<=[a-z])-(?=\d)", re.IGNORECASE)
PRICE_RE = re.compile(r"\$\s*(\d{1,3}(?:,\d{3})*(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)")
PAID_SIGNAL_RE = re.compile(r"\$|\baud\b|\bprice[sd]?\b", re.IGNORECASE)
FREE_RE = re.compile(r"\bfree\b", re.IGNORECASE)
POSTCODE_RE = re.compile(r"\s+(VIC|NSW|QLD|SA|WA|TAS|ACT|NT)\b.*$", re.IGNORECASE)

MARRINER_VENUE_ADDRESSES = {
    "princess theatre": "163 Spring St, Melbourne VIC 3000",
    "regent theatre": "191 Collins St, Melbourne VIC 3000",
    "comedy theatre": "240 Exhibition St, Melbourne VIC 3000",
    "forum melbourne": "154 Flinders St, Melbourne VIC 3000",
}

ARTSCENTRE_VENUE = "Arts Centre Melbourne"
ARTSCENTRE_ADDRESS = "100 St Kilda Road, Southbank VIC 3006"


class PriceInfo(NamedTuple):
    price_min: Optional[float]
    price_max: Optional[float]
    is_free: bool


# Text helpers


def clean_text(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace; blank becomes None."""
    if value is None:
        return None
    value = re.sub(r"\s+", " ", value).strip()
    return value or None


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower().replace("'", ""))
    return slug.strip("-")


def slug_from_url(url: str) -> Optional[str]:
    """Last non-empty path segment of ``url``."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    return segments[-1] if segments else None


def suburb_from_address(address: Optional[str]) -> Optional[str]:
    """'191 Collins St, Melbourne VIC 3000' -> 'Melbourne'."""
    if not address or "," not in address:
        return None
    tail = address.rsplit(",", 1)[1]
    return clean_text(POSTCODE_RE.sub("", tail))


# Dates


def _zone(name: Optional[str]) -> ZoneInfo:
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return DEFAULT_TIMEZONE


def _localize(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=tz) if value.tzinfo is None else value


def _today(now: Optional[datetime]) -> datetime:
    now = now or utcnow()
    local = now.astimezone(DEFAULT_TIMEZONE)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def parse_datetime(
    value: Optional[str],
    *,
    now: Optional[datetime] = None,
    tz: ZoneInfo = DEFAULT_TIMEZONE,
    year: Optional[int] = None,
) -> Optional[datetime]:
    """Parse an ISO or free-text timestamp.

    Year-less text ("Sat 5 May 7.30pm") takes ``year`` when given, otherwise
    the current year, rolling to next year when that date has passed.
    Returns None when nothing date-like can be read.
    """
    text = clean_text(value)
    if not text or text.upper() == "TBA":
        return None

    try:
        if ISO_DATE_RE.match(text):
            parsed = date_parser.isoparse(text)
            if len(text) == 10:
                parsed = datetime.combine(parsed.date(), DEFAULT_TIME)
            return _localize(parsed, tz)

        today = _today(now)
        has_year = YEAR_RE.search(text) is not None
        default = datetime(year or today.year, 1, 1, DEFAULT_TIME.hour, DEFAULT_TIME.minute)
        parsed = _localize(
            date_parser.parse(text, default=default, dayfirst=True, fuzzy=True), tz
        )
    except (ValueError, OverflowError):
        return None

    if not has_year and year is None and parsed < today:
        parsed = parsed + relativedelta(years=1)
    return parsed


def parse_local_date(
    date: Optional[str], local_time: Optional[str], tz: ZoneInfo = DEFAULT_TIMEZONE
) -> Optional[datetime]:
    """Combine an API's separate local date and time fields."""
    if not date:
        return None
    try:
        day = date_parser.isoparse(date).date()
        clock = date_parser.parse(local_time).time() if local_time else DEFAULT_TIME
    except (ValueError, OverflowError):
        return None
    return datetime.combine(day, clock, tzinfo=tz)


def parse_date_range(
    text: Optional[str], *, now: Optional[datetime] = None
) -> tuple[Optional[datetime], Optional[datetime]]:
    """Parse human date ranges.

    Handles "12 & 13 April 2025", "5 May - 15 June", "12 - 15 Jun 2025",
    "Jan 2026" and single dates. Missing pieces of the first date (month,
    year) are borrowed from the second.
    """
    text = clean_text(text)
    if not text or text.upper() == "TBA":
        return None, None

    if "&" in text:
        first, second = [p.strip() for p in text.split("&", 1)]
    else:
        parts = RANGE_SPLIT_RE.split(text, maxsplit=1)
        first, second = parts[0].strip(), (parts[1].strip() if len(parts) > 1 else "")

    if not second:
        return parse_datetime(first, now=now), None

    second_tokens = second.split()
    if first.isdigit() and len(second_tokens) > 1:
        first = " ".join([first] + second_tokens[1:])

    end_year_match = YEAR_RE.search(second)
    if end_year_match and not YEAR_RE.search(first):
        year = int(end_year_match.group(0))
        end = parse_datetime(second, now=now)
        start = parse_datetime(first, now=now, year=year)
        if start and end and start > end:
            start = start - relativedelta(years=1)
        return start, end

    if YEAR_RE.search(first) or end_year_match:
        return parse_datetime(first, now=now), parse_datetime(second, now=now)

    # Neither side has a year: keep the pair together so a running season
    # is not pushed a year ahead just because it has already opened.
    today = _today(now)
    start = parse_datetime(first, now=now, year=today.year)
    end = parse_datetime(second, now=now, year=today.year)
    if start is None:
        return None, None
    if end is not None:
        if end < start:
            end = end + relativedelta(years=1)
        if end < today:
            start, end = start + relativedelta(years=1), end + relativedelta(years=1)
    elif start < today:
        start = start + relativedelta(years=1)
    return start, end


def _valid_end(start: datetime, end: Optional[datetime]) -> Optional[datetime]:
    if end is None or end < start:
        return None
    if end - start < timedelta(minutes=1):
        return None
    return end


# Prices


def parse_amounts(text: Optional[str]) -> list[float]:
    """Dollar amounts mentioned in ``text``."""
    if not text:
        return []
    return [float(m.replace(",", "")) for m in PRICE_RE.findall(text)]


def derive_price(
    explicit_free: Optional[bool],
    amounts: list[Optional[float]],
    signals: list[Optional[str]] = (),
    source: Optional[Source] = None,
) -> PriceInfo:
    """Work out price range and free flag.

    - explicit free flag from the source wins
    - positive amounts (structured, or "$25" in signal text) give min/max
    - an explicit not-free flag without amounts keeps prices absent
    - zero or missing amounts mean free only when no text hints at a paid
      ticket

    Raises:
        MappingError: Text hints at a paid ticket but carries no amount
    """
    if explicit_free:
        return PriceInfo(None, None, True)

    positive = [a for a in amounts if a is not None and a > 0]
    if not positive:
        for signal in signals:
            positive.extend(a for a in parse_amounts(signal) if a > 0)
    if positive:
        return PriceInfo(round(min(positive), 2), round(max(positive), 2), False)

    if explicit_free is False:
        return PriceInfo(None, None, False)

    texts = [s for s in signals if s]
    if any(FREE_RE.search(s) for s in texts):
        return PriceInfo(None, None, True)
    if any(PAID_SIGNAL_RE.search(s) for s in texts):
        name = source.value if source else "record"
        raise MappingError(
            f"{name}: price mentioned without an amount",
            field="price",
            source=source.value if source else None,
        )
    return PriceInfo(None, None, True)


# Assembly


def _require(value: Optional[str], field: str, source: Source) -> str:
    value = clean_text(value)
    if not value:
        raise MappingError(f"{source.value}: missing {field}", field=field, source=source.value)
    return value


def _require_url(value: Optional[str], source: Source) -> str:
    value = _require(value, "bookingUrl", source)
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise MappingError(
            f"{source.value}: bookingUrl is not an absolute http(s) URL: {value}",
            field="bookingUrl",
            source=source.value,
        )
    return value


def _require_start(value: Optional[datetime], source: Source) -> datetime:
    if value is None:
        raise MappingError(f"{source.value}: missing startDate", field="startDate", source=source.value)
    return value


def _build(
    *,
    source: Source,
    source_id: Optional[str],
    title: Optional[str],
    booking_url: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
    venue: Venue,
    price: PriceInfo,
    category: tuple[str, list[str]],
    description: Optional[str],
    image_url: Optional[str],
    now: Optional[datetime],
) -> CanonicalEvent:
    source_id = _require(source_id, "sourceId", source)
    title = _require(title, "title", source)
    booking_url = _require_url(booking_url, source)
    start = _require_start(start, source)
    stamp = now or utcnow()

    try:
        return CanonicalEvent(
            title=title,
            description=clean_text(description) or PLACEHOLDER_DESCRIPTION,
            category=category[0],
            subcategories=category[1],
            start_date=start,
            end_date=_valid_end(start, end),
            venue=venue,
            price_min=price.price_min,
            price_max=price.price_max,
            is_free=price.is_free,
            booking_url=booking_url,
            image_url=clean_text(image_url),
            source=source,
            source_id=source_id,
            scraped_at=stamp,
            last_updated=stamp,
        )
    except ValidationError as e:
        field = ".".join(str(p) for p in e.errors()[0]["loc"]) or "event"
        raise MappingError(f"{source.value}: {e}", field=field, source=source.value) from e


def _venue(name: Optional[str], address: Optional[str] = None, suburb: Optional[str] = None) -> Venue:
    address = clean_text(address)
    return Venue(
        name=clean_text(name) or VENUE_TBA,
        address=address,
        suburb=clean_text(suburb) or suburb_from_address(address),
    )


# Per-source normalisers


def normalize_ticketmaster(raw: RawTicketmasterRecord, now: Optional[datetime] = None) -> CanonicalEvent:
    source = Source.TICKETMASTER
    tz = _zone(raw.dates.timezone)

    start = None
    if raw.dates.start:
        start = parse_local_date(raw.dates.start.local_date, raw.dates.start.local_time, tz)
        if start is None:
            start = parse_datetime(raw.dates.start.date_time, now=now, tz=tz)

    end = None
    if raw.dates.end and raw.dates.end.local_date:
        end = parse_local_date(raw.dates.end.local_date, raw.dates.end.local_time, tz)

    venue_raw = raw.embedded.venues[0] if raw.embedded and raw.embedded.venues else None
    venue = _venue(
        venue_raw.name if venue_raw else None,
        venue_raw.address.line1 if venue_raw and venue_raw.address else None,
        venue_raw.city.name if venue_raw and venue_raw.city else None,
    )

    price = derive_price(
        None,
        [p.min for p in raw.price_ranges] + [p.max for p in raw.price_ranges],
        [raw.info],
        source=Source.TICKETMASTER,
    )

    images = sorted((i for i in raw.images if i.url), key=lambda i: i.width, reverse=True)
    classification = raw.classifications[0] if raw.classifications else None
    title = clean_text(raw.name) or ""
    category = map_ticketmaster_category(
        classification.segment.name if classification and classification.segment else None,
        classification.genre.name if classification and classification.genre else None,
        classification.sub_genre.name if classification and classification.sub_genre else None,
        title,
    )

    booking_url = raw.url
    if not clean_text(booking_url) and raw.id:
        booking_url = f"https://www.ticketmaster.com.au/event/{raw.id}"

    return _build(
        source=source,
        source_id=raw.id,
        title=raw.name,
        booking_url=booking_url,
        start=start,
        end=end if end and (start is None or end.date() != start.date()) else None,
        venue=venue,
        price=price,
        category=category,
        description=raw.description or raw.info,
        image_url=images[0].url if images else None,
        now=now,
    )


def normalize_eventbrite(raw: RawEventbriteRecord, now: Optional[datetime] = None) -> CanonicalEvent:
    source = Source.EVENTBRITE

    def when(value) -> Optional[datetime]:
        if value is None:
            return None
        if value.local:
            return parse_datetime(value.local, now=now, tz=_zone(value.timezone))
        return parse_datetime(value.utc, now=now)

    title = raw.name.text if raw.name else None
    ticket = raw.ticket_availability
    amounts = []
    if ticket:
        for price in (ticket.minimum_ticket_price, ticket.maximum_ticket_price):
            amounts.append(price.major_value if price else None)

    address = None
    if raw.venue and raw.venue.address:
        address = ", ".join(
            p for p in (raw.venue.address.address_1, raw.venue.address.city) if p
        )

    return _build(
        source=source,
        source_id=raw.id,
        title=title,
        booking_url=raw.url,
        start=when(raw.start),
        end=when(raw.end),
        venue=_venue(
            raw.venue.name if raw.venue else None,
            address,
            raw.venue.address.city if raw.venue and raw.venue.address else None,
        ),
        price=derive_price(raw.is_free, amounts),
        category=map_eventbrite_category(
            raw.category.name if raw.category else None,
            raw.subcategory.name if raw.subcategory else None,
            title or "",
        ),
        description=(raw.description.text if raw.description else None) or raw.summary,
        image_url=raw.logo.url if raw.logo else None,
        now=now,
    )


def marriner_address(venue_name: Optional[str]) -> Optional[str]:
    if not venue_name:
        return None
    lowered = venue_name.lower()
    for key, address in MARRINER_VENUE_ADDRESSES.items():
        if key in lowered or lowered in key:
            return address
    return None


def normalize_marriner(raw: RawMarrinerShow, now: Optional[datetime] = None) -> CanonicalEvent:
    start, end = parse_date_range(raw.date_text, now=now)
    title = clean_text(raw.title)
    return _build(
        source=Source.MARRINER,
        source_id=raw.slug or (slugify(title) if title else None),
        title=title,
        booking_url=raw.url,
        start=start,
        end=end,
        venue=_venue(raw.venue_name, marriner_address(raw.venue_name), "Melbourne"),
        price=derive_price(False, [], [raw.info_text]),
        category=map_marriner_category(title or "", raw.venue_name),
        description=raw.description,
        image_url=raw.image_url,
        now=now,
    )


def normalize_whatson(raw: RawWhatsOnListing, now: Optional[datetime] = None) -> CanonicalEvent:
    title = clean_text(raw.title)
    tags = [t.lower() for t in raw.tags]
    explicit_free = True if "free" in tags else None
    return _build(
        source=Source.WHATSON,
        source_id=slug_from_url(raw.url),
        title=title,
        booking_url=raw.url,
        start=parse_datetime(raw.start_text, now=now),
        end=parse_datetime(raw.end_text, now=now),
        venue=_venue(raw.venue_name, raw.address),
        price=derive_price(explicit_free, [], [raw.price_text], source=Source.WHATSON),
        category=map_whatson_category(raw.listing_category, title or ""),
        description=raw.description or raw.summary,
        image_url=raw.image_url,
        now=now,
    )


FEVERUP_ID_RE = re.compile(r"/m/(\d+)")


def normalize_feverup(raw: RawFeverUpEvent, now: Optional[datetime] = None) -> CanonicalEvent:
    source_id = raw.event_id
    if not source_id:
        match = FEVERUP_ID_RE.search(raw.url)
        source_id = match.group(1) if match else None

    start = parse_datetime(raw.start_text, now=now)
    end = None
    if start is None:
        start, end = parse_date_range(raw.date_text, now=now)

    return _build(
        source=Source.FEVERUP,
        source_id=source_id,
        title=raw.name,
        booking_url=raw.url,
        start=start,
        end=end,
        venue=_venue(raw.venue_name, None, raw.locality),
        price=derive_price(None, list(raw.prices)),
        category=map_by_keywords(raw.name, raw.description),
        description=raw.description,
        image_url=raw.image_url,
        now=now,
    )


def artscentre_source_id(url: str) -> Optional[str]:
    """'/whats-on/2025/theatre/hamlet' -> '2025-theatre-hamlet'."""
    path = urlparse(url).path
    if "/whats-on/" not in path:
        return slug_from_url(url)
    tail = path.split("/whats-on/", 1)[1].strip("/")
    return tail.replace("/", "-") or None


def normalize_artscentre(raw: RawArtsCentrePage, now: Optional[datetime] = None) -> CanonicalEvent:
    title = clean_text(raw.title)
    return _build(
        source=Source.ARTSCENTRE,
        source_id=artscentre_source_id(raw.url),
        title=title,
        booking_url=raw.url,
        start=parse_datetime(raw.start_text, now=now),
        end=parse_datetime(raw.end_text, now=now),
        venue=_venue(
            raw.venue_name or ARTSCENTRE_VENUE,
            raw.address or ARTSCENTRE_ADDRESS,
        ),
        price=derive_price(raw.is_free, list(raw.prices), [raw.price_text], source=Source.ARTSCENTRE),
        category=map_artscentre_category(raw.url, title or ""),
        description=raw.description,
        image_url=raw.image_url,
        now=now,
    )


NORMALIZERS: dict[type, Callable[..., CanonicalEvent]] = {
    RawTicketmasterRecord: normalize_ticketmaster,
    RawEventbriteRecord: normalize_eventbrite,
    RawMarrinerShow: normalize_marriner,
    RawWhatsOnListing: normalize_whatson,
    RawFeverUpEvent: normalize_feverup,
    RawArtsCentrePage: normalize_artscentre,
}


def normalize(raw, *, now: Optional[datetime] = None) -> CanonicalEvent:
    """Normalise any raw record variant.

    Raises:
        MappingError: If a required field cannot be derived
        TypeError: If ``raw`` is not a known raw record type
    """
    normalizer = NORMALIZERS.get(type(raw))
    if normalizer is None:
        raise TypeError(f"No normaliser for {type(raw).__name__}")
    return normalizer(raw, now)
