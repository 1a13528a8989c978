"""
Tests for the tracker instrument.

Tests cover:
- Pure handlers: scroll depth, zone sampling, click buffering and debounce,
  pointer throttling and caps, flush rules
- Instrument shell: session token reuse, pageview round trip, fallbacks
- Delivery channel failures never reaching the host page
- End-to-end tracker -> ingestion API, including dropped deliveries
"""

import httpx
from fastapi.testclient import TestClient
from sqlmodel import select

from app.main import app
from app.models.tracking import Click, Pageview, PointerBatch, ScrollSample
from app.services.selectors import Element
from app.tracker.context import SESSION_STORAGE_KEY, InstrumentContext, TrackerConfig
from app.tracker.events import (
    ClickObserved,
    Outbound,
    PageHidden,
    PageviewLoaded,
    PointerSampled,
    ScrollTick,
    TimerFired,
    TimerKind,
    Viewport,
)
from app.tracker.handlers import handle, scroll_depth, visible_zones
from app.tracker.instrument import Instrument
from app.tracker.transport import DeliveryChannel, HttpDeliveryChannel, RecordingChannel

BODY = Element(tag="body")
BUTTON = Element(tag="button", id="buy", text=" Buy now ", parent=BODY)
HERO = Element(tag="img", classes=("hero",), parent=BODY)
START = Viewport(scroll_top=0, view_height=800, doc_height=4000)


def _loaded(ts=0, viewport=START) -> PageviewLoaded:
    return PageviewLoaded(timestamp_ms=ts, url="https://example.com/pricing", path="/pricing", viewport=viewport)


def _tracking_ctx(**changes) -> InstrumentContext:
    ctx = InstrumentContext(site_key="key", session_id="sid")
    ctx, _ = handle(ctx, _loaded())
    return ctx.evolve(pageview_id="pv1", **changes)


class LossyChannel(DeliveryChannel):
    """Drops fire-and-forget deliveries whose sequence number is in ``drop``."""

    def __init__(self, inner: DeliveryChannel, drop):
        self.inner = inner
        self.drop = set(drop)
        self.attempts = 0

    def send(self, outbound):
        self.attempts += 1
        if self.attempts in self.drop:
            return
        self.inner.send(outbound)

    def create_pageview(self, payload):
        return self.inner.create_pageview(payload)


class TestGeometry:
    """Tests for scroll depth and zone intersection."""

    def test_scroll_depth(self):
        assert scroll_depth(START) == 20
        assert scroll_depth(Viewport(800, 800, 4000)) == 40
        assert scroll_depth(Viewport(0, 800, 0)) == 0
        assert scroll_depth(Viewport(0, 5000, 4000)) == 100

    def test_visible_zones(self):
        assert visible_zones(START, 10) == [0, 1]
        assert visible_zones(Viewport(800, 800, 4000), 10) == [2, 3]
        assert visible_zones(Viewport(1000, 800, 4000), 10) == [2, 3, 4]


class TestHandlers:
    """Tests for the pure handlers."""

    def test_pageview_loaded_emits_blocking_create(self):
        ctx = InstrumentContext(site_key="key", session_id="sid")
        ctx, outbound = handle(ctx, _loaded(ts=50))

        assert ctx.start_ms == 50
        assert ctx.max_scroll_depth == 20
        assert len(outbound) == 1
        assert outbound[0].path == "/pv"
        assert outbound[0].blocking
        assert outbound[0].payload["siteKey"] == "key"
        assert outbound[0].payload["sessionId"] == "sid"

    def test_events_ignored_without_pageview_id(self):
        ctx = InstrumentContext(site_key="key", session_id="sid")
        ctx, _ = handle(ctx, _loaded())
        for event in (
            ScrollTick(100, Viewport(3000, 800, 4000)),
            ClickObserved(100, BUTTON, 10, 10),
            PointerSampled(100, 1, 1),
            PageHidden(200),
            TimerFired(30000, TimerKind.FLUSH),
        ):
            new_ctx, outbound = handle(ctx, event)
            assert new_ctx is ctx
            assert outbound == []

    def test_scroll_tick_only_raises_max(self):
        ctx = _tracking_ctx()
        ctx, outbound = handle(ctx, ScrollTick(10, Viewport(2000, 800, 4000)))
        assert outbound == []
        ctx, _ = handle(ctx, ScrollTick(20, Viewport(0, 800, 4000)))
        assert ctx.max_scroll_depth == 70

    def test_zone_timer_adds_interval_to_visible_zones(self):
        ctx = _tracking_ctx()
        ctx, _ = handle(ctx, ScrollTick(10, Viewport(800, 800, 4000)))
        ctx, _ = handle(ctx, TimerFired(2000, TimerKind.ZONES))
        ctx, _ = handle(ctx, TimerFired(4000, TimerKind.ZONES))
        assert ctx.zones == (0, 0, 4, 4, 0, 0, 0, 0, 0, 0)

    def test_click_buffered_and_debounced(self):
        ctx = _tracking_ctx()
        ctx, outbound = handle(ctx, ClickObserved(1000, BUTTON, 100, 200))
        assert outbound == []
        assert ctx.debounce_deadline_ms == 3000

        ctx, outbound = handle(ctx, ClickObserved(2500, HERO, 5, 5))
        assert ctx.debounce_deadline_ms == 4500

        # Timer armed by the first click is stale
        ctx, outbound = handle(ctx, TimerFired(3000, TimerKind.CLICK_DEBOUNCE))
        assert outbound == []

        ctx, outbound = handle(ctx, TimerFired(4500, TimerKind.CLICK_DEBOUNCE))
        (batch,) = outbound
        assert batch.path == "/click"
        clicks = batch.payload["clicks"]
        assert clicks[0]["selector"] == "button#buy"
        assert clicks[0]["text"] == "Buy now"
        assert clicks[0]["isDead"] is False
        assert clicks[1]["selector"] == "img.hero"
        assert clicks[1]["isDead"] is True
        assert ctx.click_buffer == ()

    def test_third_click_marked_rage(self):
        ctx = _tracking_ctx()
        for ts in (0, 400, 800):
            ctx, _ = handle(ctx, ClickObserved(ts, HERO, 1, 1))
        assert [c["isRage"] for c in ctx.click_buffer] == [False, False, True]

    def test_full_click_buffer_flushes_immediately(self):
        ctx = _tracking_ctx(config=TrackerConfig(max_clicks=3))
        outbound = []
        for ts in range(3):
            ctx, outbound = handle(ctx, ClickObserved(ts * 5000, BUTTON, 1, 1))
        assert len(outbound[0].payload["clicks"]) == 3
        assert ctx.click_buffer == ()
        assert ctx.debounce_deadline_ms is None

    def test_pointer_throttle_and_cap(self):
        ctx = _tracking_ctx(config=TrackerConfig(max_pointer_samples=3))
        for ts in (100, 150, 200, 260, 400, 500, 600):
            ctx, _ = handle(ctx, PointerSampled(ts, ts, 0))
        assert [s["t"] for s in ctx.pointer_buffer] == [100, 200, 400]
        assert ctx.pointer_total == 3

    def test_periodic_flush(self):
        ctx = _tracking_ctx()
        ctx, _ = handle(ctx, ScrollTick(10, Viewport(800, 800, 4000)))
        ctx, _ = handle(ctx, PointerSampled(100, 5, 6))
        ctx, _ = handle(ctx, ClickObserved(200, BUTTON, 1, 1))

        ctx, outbound = handle(ctx, TimerFired(30000, TimerKind.FLUSH))

        assert [o.path for o in outbound] == ["/scroll", "/click", "/mouse"]
        scroll = outbound[0].payload
        assert scroll == {"pageviewId": "pv1", "maxDepth": 40, "dwellMs": 30000, "zones": [0] * 10}
        assert outbound[2].payload["moves"] == [{"t": 100, "x": 5, "y": 6}]
        assert not any(o.beacon for o in outbound)
        assert ctx.pointer_buffer == () and ctx.click_buffer == ()

    def test_page_hidden_sends_beacons(self):
        ctx = _tracking_ctx()
        ctx, outbound = handle(ctx, PageHidden(5000))
        assert [o.path for o in outbound] == ["/scroll"]
        assert outbound[0].beacon

    def test_no_scroll_sent_at_zero_depth(self):
        ctx = _tracking_ctx(max_scroll_depth=0)
        _, outbound = handle(ctx, TimerFired(30000, TimerKind.FLUSH))
        assert outbound == []


class TestInstrument:
    """Tests for the Instrument shell."""

    def test_session_token_shared_across_page_loads(self):
        storage = {}
        first = Instrument("key", RecordingChannel("pv1"), storage)
        second = Instrument("key", RecordingChannel("pv2"), storage)
        assert first.session_id == second.session_id == storage[SESSION_STORAGE_KEY]

        other_tab = Instrument("key", RecordingChannel("pv3"), {})
        assert other_tab.session_id != first.session_id

    def test_load_reports_page_height(self):
        channel = RecordingChannel("pv1")
        instrument = Instrument("key", channel, {})

        assert instrument.load(_loaded()) == "pv1"
        assert channel.sent == [Outbound("/ph", {"pageviewId": "pv1", "height": 4000})]

    def test_failed_round_trip_falls_back_and_stays_idle(self):
        channel = RecordingChannel(None)
        instrument = Instrument("key", channel, {})

        assert instrument.load(_loaded()) is None
        assert [o.path for o in channel.sent] == ["/pv"]
        assert not channel.sent[0].blocking

        instrument.dispatch(ClickObserved(10, BUTTON, 1, 1))
        instrument.dispatch(PageHidden(20))
        assert len(channel.sent) == 1

    def test_dispatch_never_raises(self):
        class BrokenChannel(RecordingChannel):
            def send(self, outbound):
                raise RuntimeError("socket closed")

        instrument = Instrument("key", BrokenChannel("pv1"), {})
        instrument.load(_loaded())
        instrument.dispatch(PageHidden(1000))
        instrument.dispatch("not an event")

    def test_load_survives_failing_send(self):
        class OfflineChannel(RecordingChannel):
            def send(self, outbound):
                raise OSError("network unreachable")

        instrument = Instrument("key", OfflineChannel("pv1"), {})

        assert instrument.load(_loaded()) == "pv1"
        instrument.dispatch(ClickObserved(10, BUTTON, 1, 1))
        instrument.dispatch(TimerFired(2010, TimerKind.CLICK_DEBOUNCE))

    def test_http_failures_are_swallowed(self):
        def failing(request):
            raise httpx.ConnectError("offline", request=request)

        client = httpx.Client(transport=httpx.MockTransport(failing))
        channel = HttpDeliveryChannel("https://tracker.example/api/t", client=client)
        instrument = Instrument("key", channel, {})

        assert instrument.load(_loaded()) is None
        assert instrument.pageview_id is None

    def test_server_errors_are_swallowed(self):
        calls = []

        def handler(request):
            calls.append((request.url.path, request.headers["content-type"]))
            if request.url.path.endswith("/pv"):
                return httpx.Response(200, json={"id": "pv9"})
            return httpx.Response(500)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        instrument = Instrument("key", HttpDeliveryChannel("https://tracker.example/api/t", client=client), {})

        assert instrument.load(_loaded()) == "pv9"
        instrument.dispatch(PageHidden(1000))
        assert calls[-1] == ("/api/t/scroll", "text/plain;charset=UTF-8")


class TestEndToEnd:
    """Tracker -> HTTP -> ingestion API -> database."""

    def _instrument(self, test_session, sample_site, channel_wrapper=None):
        from app.db import get_session

        def get_test_session():
            yield test_session

        app.dependency_overrides[get_session] = get_test_session
        channel = HttpDeliveryChannel("http://testserver/api/t", client=TestClient(app))
        if channel_wrapper:
            channel = channel_wrapper(channel)
        return Instrument(sample_site.site_key, channel, {})

    def teardown_method(self):
        app.dependency_overrides.clear()

    def _browse(self, instrument):
        instrument.load(_loaded())
        instrument.dispatch(ScrollTick(500, Viewport(800, 800, 4000)))
        instrument.dispatch(TimerFired(2000, TimerKind.ZONES))
        instrument.dispatch(PointerSampled(1000, 10, 10))
        instrument.dispatch(PointerSampled(1050, 11, 11))
        instrument.dispatch(PointerSampled(1200, 12, 12))
        instrument.dispatch(TimerFired(30000, TimerKind.FLUSH))

        instrument.dispatch(ScrollTick(31000, Viewport(2000, 800, 4000)))
        instrument.dispatch(TimerFired(32000, TimerKind.ZONES))
        for ts in (33000, 33200, 33400):
            instrument.dispatch(ClickObserved(ts, HERO, 60, 70))
        instrument.dispatch(TimerFired(35400, TimerKind.CLICK_DEBOUNCE))
        instrument.dispatch(PageHidden(40000))

    def test_full_page_load(self, test_session, sample_site):
        instrument = self._instrument(test_session, sample_site)
        self._browse(instrument)

        pv = test_session.get(Pageview, instrument.pageview_id)
        assert pv.session_id == instrument.session_id
        assert pv.page_height == 4000

        scroll = test_session.exec(select(ScrollSample).where(ScrollSample.pageview_id == pv.id)).one()
        assert scroll.max_depth == 70
        assert scroll.dwell_ms == 40000
        assert scroll.zones == [0, 0, 2, 2, 0, 2, 2, 0, 0, 0]

        clicks = test_session.exec(select(Click).order_by(Click.id)).all()
        assert [c.is_rage for c in clicks] == [False, False, True]
        assert all(c.is_dead and c.selector == "img.hero" for c in clicks)

        batch = test_session.exec(select(PointerBatch)).one()
        assert [s["t"] for s in batch.samples] == [1000, 1200]

    def test_dropped_deliveries_keep_server_state_consistent(self, test_session, sample_site):
        """Losing the page height and the whole first flush leaves a valid monotonic state."""
        instrument = self._instrument(
            test_session, sample_site, channel_wrapper=lambda inner: LossyChannel(inner, drop={1, 2, 3})
        )
        self._browse(instrument)

        pv = test_session.get(Pageview, instrument.pageview_id)
        assert pv.page_height is None

        scroll = test_session.exec(select(ScrollSample).where(ScrollSample.pageview_id == pv.id)).one()
        assert scroll.max_depth == 70
        assert scroll.zones == [0, 0, 2, 2, 0, 2, 2, 0, 0, 0]
        assert test_session.exec(select(PointerBatch)).all() == []
        assert len(test_session.exec(select(Click)).all()) == 3

    def test_invalid_site_key_leaves_instrument_idle(self, test_session, sample_site):
        from app.db import get_session

        def get_test_session():
            yield test_session

        app.dependency_overrides[get_session] = get_test_session
        channel = HttpDeliveryChannel("http://testserver/api/t", client=TestClient(app))
        instrument = Instrument("unknown-key", channel, {})

        assert instrument.load(_loaded()) is None
        instrument.dispatch(PageHidden(1000))
        assert test_session.exec(select(Pageview)).all() == []
