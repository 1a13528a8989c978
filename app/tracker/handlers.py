"""
Pure event handlers: ``handle(ctx, event) -> (ctx', outbound)``.

Nothing here touches the network or a clock. Handlers never block and
never raise for well-formed events; an instrument without a pageview id
ignores everything except ``PageviewLoaded``.
"""

from typing import List, Tuple

from app.services.classifier import classify_click
from app.services.math import round_half_up
from app.tracker.context import InstrumentContext
from app.tracker.events import (
    ClickObserved,
    Event,
    Outbound,
    PageHidden,
    PageviewLoaded,
    PointerSampled,
    ScrollTick,
    TimerFired,
    TimerKind,
    Viewport,
)

Result = Tuple[InstrumentContext, List[Outbound]]


def scroll_depth(viewport: Viewport) -> int:
    """Percentage of the document above the bottom edge of the viewport."""
    if viewport.doc_height <= 0:
        return 0
    depth = round_half_up((viewport.scroll_top + viewport.view_height) / viewport.doc_height * 100)
    return min(int(depth), 100)


def visible_zones(viewport: Viewport, zone_count: int) -> List[int]:
    """Indexes of the page bands intersecting the viewport."""
    if viewport.doc_height <= 0:
        return []
    top = viewport.scroll_top * zone_count
    bottom = (viewport.scroll_top + viewport.view_height) * zone_count
    doc = viewport.doc_height
    return [i for i in range(zone_count) if bottom > i * doc and top < (i + 1) * doc]


# ============== HANDLERS ==============


def on_pageview_loaded(ctx: InstrumentContext, event: PageviewLoaded) -> Result:
    ctx = ctx.evolve(
        start_ms=event.timestamp_ms,
        viewport=event.viewport,
        max_scroll_depth=max(ctx.max_scroll_depth, scroll_depth(event.viewport)),
    )
    payload = {
        "siteKey": ctx.site_key,
        "sessionId": ctx.session_id,
        "url": event.url,
        "path": event.path,
        "title": event.title,
        "referrer": event.referrer,
        "screenW": event.screen_w,
        "screenH": event.screen_h,
    }
    return ctx, [Outbound("/pv", payload, blocking=True)]


def attach_pageview(ctx: InstrumentContext, pageview_id: str) -> Result:
    """Store the server's pageview id and report the page height."""
    ctx = ctx.evolve(pageview_id=pageview_id)
    if ctx.viewport is None or ctx.viewport.doc_height <= 0:
        return ctx, []
    return ctx, [Outbound("/ph", {"pageviewId": pageview_id, "height": ctx.viewport.doc_height})]


def on_scroll(ctx: InstrumentContext, event: ScrollTick) -> Result:
    depth = max(ctx.max_scroll_depth, scroll_depth(event.viewport))
    return ctx.evolve(viewport=event.viewport, max_scroll_depth=depth), []


def sample_zones(ctx: InstrumentContext, event: TimerFired) -> Result:
    if ctx.viewport is None:
        return ctx, []
    seconds = ctx.config.zone_interval_ms // 1000
    visible = set(visible_zones(ctx.viewport, ctx.config.zone_count))
    zones = tuple(z + seconds if i in visible else z for i, z in enumerate(ctx.zones))
    return ctx.evolve(zones=zones), []


def _click_batch(ctx: InstrumentContext, beacon: bool = False) -> List[Outbound]:
    if not ctx.click_buffer:
        return []
    return [Outbound("/click", {"clicks": list(ctx.click_buffer)}, beacon=beacon)]


def on_click(ctx: InstrumentContext, event: ClickObserved) -> Result:
    window, label = classify_click(ctx.click_window, event.element, event.timestamp_ms)
    text = event.element.text.strip()[: ctx.config.click_text_length]
    record = {
        "pageviewId": ctx.pageview_id,
        "x": event.x,
        "y": event.y,
        "selector": label.selector,
        "text": text or None,
        "href": label.href,
        "isRage": label.is_rage,
        "isDead": label.is_dead,
    }
    ctx = ctx.evolve(click_window=window, click_buffer=ctx.click_buffer + (record,))

    if len(ctx.click_buffer) >= ctx.config.max_clicks:
        outbound = _click_batch(ctx)
        return ctx.evolve(click_buffer=(), debounce_deadline_ms=None), outbound

    return ctx.evolve(debounce_deadline_ms=event.timestamp_ms + ctx.config.click_debounce_ms), []


def flush_clicks(ctx: InstrumentContext, event: TimerFired) -> Result:
    # A timer armed before a later click is stale
    if ctx.debounce_deadline_ms is None or event.timestamp_ms < ctx.debounce_deadline_ms:
        return ctx, []
    outbound = _click_batch(ctx)
    return ctx.evolve(click_buffer=(), debounce_deadline_ms=None), outbound


def on_pointer(ctx: InstrumentContext, event: PointerSampled) -> Result:
    config = ctx.config
    if ctx.pointer_total >= config.max_pointer_samples:
        return ctx, []
    if ctx.last_pointer_ms is not None and event.timestamp_ms - ctx.last_pointer_ms < config.pointer_throttle_ms:
        return ctx, []
    sample = {"t": int(event.timestamp_ms - ctx.start_ms), "x": event.x, "y": event.y}
    return (
        ctx.evolve(
            pointer_buffer=ctx.pointer_buffer + (sample,),
            pointer_total=ctx.pointer_total + 1,
            last_pointer_ms=event.timestamp_ms,
        ),
        [],
    )


def flush(ctx: InstrumentContext, timestamp_ms: float, beacon: bool = False) -> Result:
    """Emit scroll state plus buffered clicks and pointer samples."""
    outbound: List[Outbound] = []
    if ctx.max_scroll_depth > 0:
        payload = {
            "pageviewId": ctx.pageview_id,
            "maxDepth": ctx.max_scroll_depth,
            "dwellMs": max(int(timestamp_ms - ctx.start_ms), 0),
            "zones": list(ctx.zones),
        }
        outbound.append(Outbound("/scroll", payload, beacon=beacon))

    outbound.extend(_click_batch(ctx, beacon=beacon))

    if ctx.pointer_buffer:
        payload = {"pageviewId": ctx.pageview_id, "moves": list(ctx.pointer_buffer)}
        outbound.append(Outbound("/mouse", payload, beacon=beacon))

    ctx = ctx.evolve(click_buffer=(), pointer_buffer=(), debounce_deadline_ms=None)
    return ctx, outbound


def on_timer(ctx: InstrumentContext, event: TimerFired) -> Result:
    if event.kind is TimerKind.ZONES:
        return sample_zones(ctx, event)
    if event.kind is TimerKind.CLICK_DEBOUNCE:
        return flush_clicks(ctx, event)
    return flush(ctx, event.timestamp_ms)


def handle(ctx: InstrumentContext, event: Event) -> Result:
    if isinstance(event, PageviewLoaded):
        return on_pageview_loaded(ctx, event)
    if not ctx.tracking:
        return ctx, []

    if isinstance(event, ScrollTick):
        return on_scroll(ctx, event)
    if isinstance(event, ClickObserved):
        return on_click(ctx, event)
    if isinstance(event, PointerSampled):
        return on_pointer(ctx, event)
    if isinstance(event, PageHidden):
        return flush(ctx, event.timestamp_ms, beacon=True)
    if isinstance(event, TimerFired):
        return on_timer(ctx, event)
    raise TypeError(f"unknown tracker event: {type(event).__name__}")
