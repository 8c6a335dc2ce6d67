"""
Raw per-source records.

Each adapter hands the normaliser one of these variants. API sources keep
the provider's JSON shape (Ticketmaster Discovery v2, Eventbrite v3); HTML
sources carry the fields their scrapers extract. Every field the scraper
might fail to find is optional so missing data surfaces as a MappingError
during normalisation instead of a validation error here.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _CamelRawModel(_RawModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)


# Ticketmaster Discovery API v2


class TicketmasterDate(_CamelRawModel):
    local_date: Optional[str] = None
    local_time: Optional[str] = None
    date_time: Optional[str] = None  # UTC instant when the provider knows it


class TicketmasterDates(_CamelRawModel):
    start: Optional[TicketmasterDate] = None
    end: Optional[TicketmasterDate] = None
    timezone: Optional[str] = None


class TicketmasterNamed(_CamelRawModel):
    name: Optional[str] = None


class TicketmasterClassification(_CamelRawModel):
    segment: Optional[TicketmasterNamed] = None
    genre: Optional[TicketmasterNamed] = None
    sub_genre: Optional[TicketmasterNamed] = None


class TicketmasterPriceRange(_CamelRawModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None


class TicketmasterImage(_CamelRawModel):
    url: Optional[str] = None
    width: int = 0
    height: int = 0


class TicketmasterAddress(_CamelRawModel):
    line1: Optional[str] = None


class TicketmasterVenue(_CamelRawModel):
    name: Optional[str] = None
    address: Optional[TicketmasterAddress] = None
    city: Optional[TicketmasterNamed] = None
    state: Optional[TicketmasterNamed] = None


class TicketmasterEmbedded(_CamelRawModel):
    venues: list[TicketmasterVenue] = Field(default_factory=list)


class RawTicketmasterRecord(_CamelRawModel):
    kind: Literal["ticketmaster"] = "ticketmaster"
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    info: Optional[str] = None
    url: Optional[str] = None
    dates: TicketmasterDates = Field(default_factory=TicketmasterDates)
    classifications: list[TicketmasterClassification] = Field(default_factory=list)
    price_ranges: list[TicketmasterPriceRange] = Field(default_factory=list)
    images: list[TicketmasterImage] = Field(default_factory=list)
    embedded: Optional[TicketmasterEmbedded] = Field(default=None, alias="_embedded")


# Eventbrite API v3 (organizer events with expansions)


class EventbriteText(_RawModel):
    text: Optional[str] = None


class EventbriteDateTime(_RawModel):
    local: Optional[str] = None
    timezone: Optional[str] = None
    utc: Optional[str] = None


class EventbriteCategory(_RawModel):
    name: Optional[str] = None


class EventbriteAddress(_RawModel):
    address_1: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postal_code: Optional[str] = None


class EventbriteVenue(_RawModel):
    name: Optional[str] = None
    address: Optional[EventbriteAddress] = None


class EventbritePrice(_RawModel):
    major_value: Optional[float] = None
    currency: Optional[str] = None


class EventbriteTicketAvailability(_RawModel):
    minimum_ticket_price: Optional[EventbritePrice] = None
    maximum_ticket_price: Optional[EventbritePrice] = None


class EventbriteLogo(_RawModel):
    url: Optional[str] = None


class RawEventbriteRecord(_RawModel):
    kind: Literal["eventbrite"] = "eventbrite"
    id: Optional[str] = None
    name: Optional[EventbriteText] = None
    description: Optional[EventbriteText] = None
    summary: Optional[str] = None
    url: Optional[str] = None
    start: Optional[EventbriteDateTime] = None
    end: Optional[EventbriteDateTime] = None
    is_free: Optional[bool] = None
    category: Optional[EventbriteCategory] = None
    subcategory: Optional[EventbriteCategory] = None
    logo: Optional[EventbriteLogo] = None
    venue: Optional[EventbriteVenue] = None
    ticket_availability: Optional[EventbriteTicketAvailability] = None


# Scraped HTML sources


class RawMarrinerShow(_RawModel):
    """A Marriner Group show detail page."""

    kind: Literal["marriner"] = "marriner"
    url: str
    slug: Optional[str] = None
    title: Optional[str] = None
    date_text: Optional[str] = None
    venue_name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    info_text: Optional[str] = None  # booking/price panel text


class RawWhatsOnListing(_RawModel):
    """A What's On Melbourne listing, optionally enriched from its detail page."""

    kind: Literal["whatson"] = "whatson"
    url: str
    title: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    start_text: Optional[str] = None
    end_text: Optional[str] = None
    image_url: Optional[str] = None
    venue_name: Optional[str] = None
    address: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    price_text: Optional[str] = None
    listing_category: Optional[str] = None


class RawFeverUpEvent(_RawModel):
    """A Fever experience page (JSON-LD plus date text)."""

    kind: Literal["feverup"] = "feverup"
    url: str
    event_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    venue_name: Optional[str] = None
    locality: Optional[str] = None
    prices: list[float] = Field(default_factory=list)
    start_text: Optional[str] = None  # JSON-LD startDate when present
    date_text: Optional[str] = None  # visible "12 Jan - 3 Mar" style text


class RawArtsCentrePage(_RawModel):
    """An Arts Centre Melbourne production page."""

    kind: Literal["artscentre"] = "artscentre"
    url: str
    title: Optional[str] = None
    description: Optional[str] = None
    start_text: Optional[str] = None
    end_text: Optional[str] = None
    image_url: Optional[str] = None
    venue_name: Optional[str] = None
    address: Optional[str] = None
    prices: list[float] = Field(default_factory=list)
    price_text: Optional[str] = None
    is_free: Optional[bool] = None


RawRecord = Annotated[
    Union[
        RawTicketmasterRecord,
        RawEventbriteRecord,
        RawMarrinerShow,
        RawWhatsOnListing,
        RawFeverUpEvent,
        RawArtsCentrePage,
    ],
    Field(discriminator="kind"),
]
