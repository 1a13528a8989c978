"""
Per-page-load instrument state.

``InstrumentContext`` is immutable; handlers return a new one. There is no
module-level state, so two page loads never share buffers or timers.
"""

import secrets
from dataclasses import dataclass, field, replace
from typing import MutableMapping, Optional, Tuple

from app.core.config import settings
from app.services.classifier import RageClickWindow
from app.tracker.events import Viewport

SESSION_STORAGE_KEY = "_az_sid"


@dataclass(frozen=True)
class TrackerConfig:
    zone_interval_ms: int = 2000
    flush_interval_ms: int = 30000
    click_debounce_ms: int = 2000
    pointer_throttle_ms: int = 100
    max_clicks: int = settings.MAX_CLICKS_PER_BATCH
    max_pointer_samples: int = settings.MAX_POINTER_SAMPLES
    zone_count: int = settings.ATTENTION_ZONE_COUNT
    click_text_length: int = 50
    rage_window_ms: int = settings.RAGE_CLICK_WINDOW_MS
    rage_threshold: int = settings.RAGE_CLICK_THRESHOLD


@dataclass(frozen=True)
class InstrumentContext:
    site_key: str
    session_id: str
    config: TrackerConfig = field(default_factory=TrackerConfig)
    pageview_id: Optional[str] = None
    start_ms: float = 0
    viewport: Optional[Viewport] = None
    max_scroll_depth: int = 0
    zones: Tuple[int, ...] = ()
    click_buffer: Tuple[dict, ...] = ()
    pointer_buffer: Tuple[dict, ...] = ()
    pointer_total: int = 0
    last_pointer_ms: Optional[float] = None
    click_window: Optional[RageClickWindow] = None
    debounce_deadline_ms: Optional[float] = None

    def __post_init__(self):
        if not self.zones:
            object.__setattr__(self, "zones", (0,) * self.config.zone_count)
        if self.click_window is None:
            window = RageClickWindow(window_ms=self.config.rage_window_ms, threshold=self.config.rage_threshold)
            object.__setattr__(self, "click_window", window)

    @property
    def tracking(self) -> bool:
        return self.pageview_id is not None

    def evolve(self, **changes) -> "InstrumentContext":
        return replace(self, **changes)


def mint_session_token() -> str:
    return secrets.token_urlsafe(12)


def resolve_session_token(storage: MutableMapping[str, str]) -> str:
    """Reuse the tab's session token or mint and store a new one."""
    token = storage.get(SESSION_STORAGE_KEY)
    if not token:
        token = mint_session_token()
        storage[SESSION_STORAGE_KEY] = token
    return token
