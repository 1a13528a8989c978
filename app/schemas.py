"""
Request bodies for the ingestion and query APIs.

Ingestion bodies come from the tracker on third-party pages. Field names are
camelCase on the wire; the short names used by older tracker builds
(``sk``, ``pvId``, ``d``, ...) are accepted too. Free text is truncated here,
before anything touches the database.
"""

from typing import Annotated, Any, List, Optional
from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, NonNegativeInt, field_validator

from app.core.config import settings


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def _truncate(limit: int):
    def truncate(value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)[:limit]

    return truncate


def _round_number(value: Any) -> Any:
    if isinstance(value, float):
        return int(round(value))
    return value


def _optional_int(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


Coordinate = Annotated[int, BeforeValidator(_round_number)]
LenientInt = Annotated[Optional[int], BeforeValidator(_optional_int)]
ZoneVector = Annotated[
    List[NonNegativeInt],
    Field(min_length=settings.ATTENTION_ZONE_COUNT, max_length=settings.ATTENTION_ZONE_COUNT),
]


# ============== INGESTION ==============


class PageviewIn(BaseModel):
    site_key: str = Field(min_length=1, validation_alias=_alias("siteKey", "sk", "site_key"))
    session_id: Annotated[str, BeforeValidator(_truncate(100))] = Field(
        min_length=1, validation_alias=_alias("sessionId", "sid", "session_id")
    )
    url: Annotated[str, BeforeValidator(_truncate(2000))] = Field(min_length=1)
    path: Annotated[Optional[str], BeforeValidator(_truncate(500))] = None
    title: Annotated[Optional[str], BeforeValidator(_truncate(500))] = None
    referrer: Annotated[Optional[str], BeforeValidator(_truncate(2000))] = Field(
        default=None, validation_alias=_alias("referrer", "ref")
    )
    screen_w: LenientInt = Field(default=None, validation_alias=_alias("screenW", "sw", "screen_w"))
    screen_h: LenientInt = Field(default=None, validation_alias=_alias("screenH", "sh", "screen_h"))
    utm_source: Annotated[Optional[str], BeforeValidator(_truncate(200))] = Field(
        default=None, validation_alias=_alias("utmSource", "utm_source")
    )
    utm_medium: Annotated[Optional[str], BeforeValidator(_truncate(200))] = Field(
        default=None, validation_alias=_alias("utmMedium", "utm_medium")
    )
    utm_campaign: Annotated[Optional[str], BeforeValidator(_truncate(200))] = Field(
        default=None, validation_alias=_alias("utmCampaign", "utm_campaign")
    )


class ScrollIn(BaseModel):
    pageview_id: str = Field(min_length=1, validation_alias=_alias("pageviewId", "pvId", "pageview_id"))
    max_depth: NonNegativeInt = Field(validation_alias=_alias("maxDepth", "d", "max_depth"))
    dwell_ms: Optional[NonNegativeInt] = Field(default=None, validation_alias=_alias("dwellMs", "dw", "dwell_ms"))
    zones: Optional[ZoneVector] = None


class ClickIn(BaseModel):
    pageview_id: str = Field(min_length=1, validation_alias=_alias("pageviewId", "pvId", "pageview_id"))
    x: Coordinate
    y: Coordinate
    selector: Annotated[Optional[str], BeforeValidator(_truncate(200))] = Field(
        default=None, validation_alias=_alias("selector", "sel")
    )
    text: Annotated[Optional[str], BeforeValidator(_truncate(100))] = None
    href: Annotated[Optional[str], BeforeValidator(_truncate(500))] = None
    is_rage: bool = Field(default=False, validation_alias=_alias("isRage", "rage", "is_rage"))
    is_dead: bool = Field(default=False, validation_alias=_alias("isDead", "dead", "is_dead"))


class ClickBatchIn(BaseModel):
    clicks: List[ClickIn] = Field(min_length=1)

    @field_validator("clicks", mode="before")
    @classmethod
    def cap_batch(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[: settings.MAX_CLICKS_PER_BATCH]
        return value


class PointerSampleIn(BaseModel):
    t: Coordinate  # ms since page load
    x: Coordinate
    y: Coordinate


class PointerBatchIn(BaseModel):
    pageview_id: str = Field(min_length=1, validation_alias=_alias("pageviewId", "pvId", "pageview_id"))
    moves: List[PointerSampleIn] = Field(min_length=1, validation_alias=_alias("moves", "samples"))

    @field_validator("moves", mode="before")
    @classmethod
    def cap_samples(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[: settings.MAX_POINTER_SAMPLES]
        return value


class PageHeightIn(BaseModel):
    pageview_id: str = Field(min_length=1, validation_alias=_alias("pageviewId", "pvId", "pageview_id"))
    height: NonNegativeInt = Field(validation_alias=_alias("height", "h"))


# ============== DASHBOARD ==============


class SiteCreate(BaseModel):
    domain: str = Field(min_length=1)
    name: Optional[str] = None


class SiteUpdate(BaseModel):
    is_active: bool


class FunnelStepIn(BaseModel):
    path: Annotated[Optional[str], BeforeValidator(_truncate(500))] = None
    label: Annotated[Optional[str], BeforeValidator(_truncate(200))] = None


class FunnelCreate(BaseModel):
    site_id: int
    name: Annotated[str, BeforeValidator(_truncate(200))] = Field(min_length=1)
    steps: List[FunnelStepIn] = Field(min_length=1)

    @field_validator("steps", mode="before")
    @classmethod
    def cap_steps(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[: settings.MAX_FUNNEL_STEPS]
        return value


class FunnelUpdate(BaseModel):
    name: Annotated[Optional[str], BeforeValidator(_truncate(200))] = None
    steps: Optional[List[FunnelStepIn]] = None

    @field_validator("steps", mode="before")
    @classmethod
    def cap_steps(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[: settings.MAX_FUNNEL_STEPS]
        return value
