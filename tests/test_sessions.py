"""
Tests for session reconstruction, click logs and rage/dead roll-ups.
"""

import pytest

from app.core.errors import NotFound
from app.models.tracking import PointerBatch
from app.services.clicks import click_log, rage_dead_rollup
from app.services.sessions import export_pointer_batches, list_sessions, session_timeline

SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)


class TestListSessions:
    """Tests for list_sessions."""

    def test_summaries_newest_first(self, test_session, sample_site, traffic):
        first, second = traffic.session_walk("old", ["/", "/pricing"])
        traffic.session_walk("new", ["/blog"], start=500, user_agent=SAFARI_IPHONE)
        traffic.scroll(first, 50, 1200)
        traffic.scroll(second, 80, 800)
        traffic.click(first, 10, 10)

        result = list_sessions(test_session, sample_site, days=30)

        assert result["total"] == 2
        newest, oldest = result["sessions"]
        assert newest["session_id"] == "new"
        assert newest["device"] == "mobile"
        assert oldest["page_count"] == 2
        assert oldest["dwell_ms"] == 2000
        assert oldest["total_clicks"] == 1
        assert oldest["entry_page"] == "/"

    def test_device_filter_and_pagination(self, test_session, sample_site, traffic):
        for i in range(3):
            traffic.session_walk(f"m{i}", ["/"], start=i * 10, user_agent=SAFARI_IPHONE)
        traffic.session_walk("d", ["/"], start=100)

        result = list_sessions(test_session, sample_site, days=30, device="mobile", page=2, page_size=2)
        assert result["total"] == 3
        assert len(result["sessions"]) == 1


class TestSessionTimeline:
    """Tests for session_timeline."""

    def test_events_in_chronological_order(self, test_session, sample_site, traffic):
        landing, pricing = traffic.session_walk("s1", ["/", "/pricing"])
        traffic.click(landing, 5, 5, offset_seconds=3, selector="a#cta", href="/pricing")
        traffic.scroll(landing, 70, 4000)

        timeline = session_timeline(test_session, sample_site, "s1")

        types = [e["type"] for e in timeline["events"]]
        assert types[0] == "pageview"
        assert types.count("pageview") == 2
        assert "click" in types and "scroll" in types
        timestamps = [e["timestamp"] for e in timeline["events"]]
        assert timestamps == sorted(timestamps)
        assert timeline["page_count"] == 2

    def test_duplicate_scroll_rows_read_as_one(self, test_session, sample_site, traffic):
        (pv,) = traffic.session_walk("s1", ["/"])
        traffic.scroll(pv, 40, 5000)
        traffic.scroll(pv, 60, 8000)

        timeline = session_timeline(test_session, sample_site, "s1")

        scrolls = [e for e in timeline["events"] if e["type"] == "scroll"]
        assert len(scrolls) == 1
        assert scrolls[0]["max_depth"] == 60
        assert timeline["dwell_ms"] == 8000
        assert list_sessions(test_session, sample_site, days=30)["sessions"][0]["dwell_ms"] == 8000

    def test_unknown_session(self, test_session, sample_site):
        with pytest.raises(NotFound):
            session_timeline(test_session, sample_site, "ghost")

    def test_pointer_export_grouped_by_pageview(self, test_session, sample_site, traffic):
        (pv,) = traffic.session_walk("s1", ["/"])
        test_session.add(PointerBatch(pageview_id=pv.id, samples=[{"t": 0, "x": 1, "y": 2}]))
        test_session.add(PointerBatch(pageview_id=pv.id, samples=[{"t": 100, "x": 3, "y": 4}]))
        test_session.commit()

        export = export_pointer_batches(test_session, sample_site, "s1")

        assert export["pageviews"][0]["batches"] == [[{"t": 0, "x": 1, "y": 2}], [{"t": 100, "x": 3, "y": 4}]]


class TestClickLog:
    """Tests for click_log and rage_dead_rollup."""

    def test_filters_and_pagination(self, test_session, sample_site, traffic):
        (pv,) = traffic.session_walk("s1", ["/pricing"])
        traffic.click(pv, 1, 1, offset_seconds=1, selector="a#buy", href="/buy")
        traffic.click(pv, 2, 2, offset_seconds=2, selector="div.card")
        traffic.click(pv, 3, 3, offset_seconds=3, selector="a#docs", href="/docs")

        log = click_log(test_session, sample_site, days=30, selector_contains="a#")
        assert log["total"] == 2
        assert log["clicks"][0]["selector"] == "a#docs"
        assert log["clicks"][0]["session_id"] == "s1"

        with_href = click_log(test_session, sample_site, days=30, has_href=True, page_size=1, page=2)
        assert with_href["total"] == 2
        assert [c["selector"] for c in with_href["clicks"]] == ["a#buy"]

        other_path = click_log(test_session, sample_site, days=30, path="/blog")
        assert other_path["total"] == 0

    def test_rage_dead_rollup(self, test_session, sample_site, traffic):
        (pv,) = traffic.session_walk("s1", ["/"])
        for i in range(3):
            traffic.click(pv, 1, 1, offset_seconds=i, selector="img#hero", is_rage=i == 2, is_dead=True, text="Hero")
        traffic.click(pv, 1, 1, offset_seconds=5, selector=None, is_rage=True)
        traffic.click(pv, 1, 1, offset_seconds=6, selector="button#ok")

        rollup = rage_dead_rollup(test_session, sample_site, days=30)

        assert rollup["total_rage"] == 2
        assert rollup["total_dead"] == 3
        top = rollup["rage_clicks"][0]
        assert top == {
            "selector": "img#hero",
            "text": "Hero",
            "rage_count": 1,
            "dead_count": 3,
            "count": 4,
            "type": "both",
        }
        assert rollup["rage_clicks"][1]["selector"] == "(unknown)"
        assert rollup["rage_clicks"][1]["type"] == "rage"
        assert len(rollup["rage_clicks"]) == 2
