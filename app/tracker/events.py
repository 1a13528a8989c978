"""
Typed events the host page feeds into the instrument.

Timestamps are milliseconds on the page's clock. Geometry is in CSS pixels
of the document.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from app.services.selectors import Element


@dataclass(frozen=True)
class Viewport:
    scroll_top: int
    view_height: int
    doc_height: int


@dataclass(frozen=True)
class PageviewLoaded:
    timestamp_ms: float
    url: str
    path: str
    viewport: Viewport
    title: Optional[str] = None
    referrer: Optional[str] = None
    screen_w: Optional[int] = None
    screen_h: Optional[int] = None


@dataclass(frozen=True)
class ScrollTick:
    timestamp_ms: float
    viewport: Viewport


@dataclass(frozen=True)
class ClickObserved:
    timestamp_ms: float
    element: Element
    x: int  # Document coordinates of the target's centre
    y: int


@dataclass(frozen=True)
class PointerSampled:
    timestamp_ms: float
    x: int
    y: int


@dataclass(frozen=True)
class PageHidden:
    timestamp_ms: float


class TimerKind(str, Enum):
    ZONES = "zones"
    FLUSH = "flush"
    CLICK_DEBOUNCE = "click_debounce"


@dataclass(frozen=True)
class TimerFired:
    timestamp_ms: float
    kind: TimerKind


Event = Union[PageviewLoaded, ScrollTick, ClickObserved, PointerSampled, PageHidden, TimerFired]


@dataclass(frozen=True)
class Outbound:
    """
    One delivery for the channel.

    ``blocking`` marks the pageview round trip; ``beacon`` marks deliveries
    made while the page is going away.
    """

    path: str
    payload: dict
    blocking: bool = False
    beacon: bool = False
