"""
Rage/dead-click classification.

Runs at capture time against the page load's own click history only; the
server never re-derives these flags, it only rolls them up.

Rage: the selector occurs ``threshold`` or more times (current click
included) within the trailing window; a click exactly ``window_ms`` old
still counts.
Dead: the element is not interactive and has no link target.
The two flags are independent.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from app.core.config import settings
from app.services.selectors import Element, derive_selector, is_interactive, resolve_link_target


@dataclass(frozen=True)
class RageClickWindow:
    """Trailing ``(selector, timestamp_ms)`` history for one page load."""

    window_ms: int = settings.RAGE_CLICK_WINDOW_MS
    threshold: int = settings.RAGE_CLICK_THRESHOLD
    entries: Tuple[Tuple[str, float], ...] = ()

    def observe(self, selector: str, timestamp_ms: float) -> Tuple["RageClickWindow", bool]:
        """Record a click and report whether it is a rage click."""
        cutoff = timestamp_ms - self.window_ms
        kept = tuple(e for e in self.entries if e[1] >= cutoff)
        kept = kept + ((selector, timestamp_ms),)
        occurrences = sum(1 for sel, _ in kept if sel == selector)
        window = RageClickWindow(window_ms=self.window_ms, threshold=self.threshold, entries=kept)
        return window, occurrences >= self.threshold


@dataclass(frozen=True)
class ClickClassification:
    selector: str
    href: Optional[str]
    is_rage: bool
    is_dead: bool


def is_dead_click(element: Element) -> bool:
    return not is_interactive(element) and resolve_link_target(element) is None


def classify_click(
    window: RageClickWindow, element: Element, timestamp_ms: float
) -> Tuple[RageClickWindow, ClickClassification]:
    """Classify one click; returns the advanced window and the labels."""
    selector = derive_selector(element)
    window, is_rage = window.observe(selector, timestamp_ms)
    return window, ClickClassification(
        selector=selector,
        href=resolve_link_target(element),
        is_rage=is_rage,
        is_dead=is_dead_click(element),
    )
