import re
from types import SimpleNamespace
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from feedloop.reports.waterfall import (
    BAR_AREA,
    COLOR_CORRELATED,
    COLOR_ERROR_RELATED,
    COLOR_HTTP_ERROR,
    COLOR_NORMAL,
    COLOR_REDIRECT,
    COLOR_SLOW,
    LABEL_AREA,
    PADDING,
    ROW_HEIGHT,
    bar_color,
    build_diagnostics_pdf,
    format_bytes,
    layout_waterfall,
    truncate_label,
)

ORIGIN = PADDING + LABEL_AREA


@pytest.mark.parametrize("value,expected", [
    (0, "0 B"),
    (None, "0 B"),
    (0.5, "0.5 B"),
    (512, "512 B"),
    (1536, "1.5 KB"),
    (1024 * 1024, "1 MB"),
    (5 * 1024 ** 4, "5120 GB"),
])
def test_format_bytes(value, expected):
    assert format_bytes(value) == expected


def test_truncate_label():
    assert truncate_label("short") == "short"
    assert truncate_label("x" * 40) == "x" * 30 + "..."


class TestColors:
    def test_precedence(self):
        assert bar_color({"status": 500, "error_related": True}, correlated=True) == COLOR_ERROR_RELATED
        assert bar_color({"status": 500}, correlated=True) == COLOR_CORRELATED
        assert bar_color({"status": 404, "duration": 5000}) == COLOR_HTTP_ERROR
        assert bar_color({"status": 302}) == COLOR_REDIRECT
        assert bar_color({"status": 200, "duration": 1500}) == COLOR_SLOW
        assert bar_color({"status": 200, "duration": 100}) == COLOR_NORMAL
        assert bar_color({}) == COLOR_NORMAL


class TestLayout:
    def test_empty_or_garbage(self):
        assert layout_waterfall(None).bars == []
        assert layout_waterfall("nope").bars == []
        assert layout_waterfall([1, "x"]).bars == []

    def test_positions_from_start_times(self):
        reqs = [
            {"name": "/late", "startTime": 1500, "duration": 500},
            {"name": "/first", "startTime": 1000, "duration": 250, "size": 2048},
        ]
        layout = layout_waterfall(reqs)

        assert not layout.synthetic
        assert layout.total_duration == 1000
        assert [b.label for b in layout.bars] == ["/first", "/late"]

        first, late = layout.bars
        assert first.x == ORIGIN
        assert first.width == pytest.approx(BAR_AREA / 4)
        assert late.x == pytest.approx(ORIGIN + BAR_AREA / 2)
        assert late.y == PADDING + ROW_HEIGHT
        assert first.info == "250ms | 2 KB"
        assert layout.height == 2 * ROW_HEIGHT + 2 * PADDING

    def test_iso_start_times(self):
        reqs = [
            {"url": "/b", "startTime": "2026-01-01T00:00:00.200Z", "duration": 100},
            {"url": "/a", "startTime": "2026-01-01T00:00:00Z", "duration": 100},
        ]
        layout = layout_waterfall(reqs)
        assert [b.label for b in layout.bars] == ["/a", "/b"]
        assert layout.total_duration == pytest.approx(300)

    def test_synthetic_timeline_is_back_to_back(self):
        layout = layout_waterfall([
            {"name": "/a", "duration": 100},
            {"name": "/b", "duration": 300},
        ])
        assert layout.synthetic
        assert layout.total_duration == 400
        a, b = layout.bars
        assert b.x == pytest.approx(a.x + a.width)

    def test_zero_duration_still_visible(self):
        layout = layout_waterfall([{"name": "/ping", "startTime": 10, "duration": 0}])
        assert layout.bars[0].width == 2.0
        assert layout.total_duration == 0

    def test_correlated_and_markers(self):
        layout = layout_waterfall(
            [{"name": "/a", "duration": 100}, {"name": "/b", "duration": 100}],
            correlated={0},
        )
        assert layout.bars[0].is_correlated
        assert layout.bars[0].color == COLOR_CORRELATED
        assert not layout.bars[1].is_correlated
        assert layout.markers[0] == (ORIGIN, "0ms")
        assert layout.markers[-1] == (ORIGIN + BAR_AREA, "200ms")

    def test_marks_follow_original_positions(self):
        requests = [
            "garbage",
            {"name": "/late", "startTime": 500, "duration": 10, "status": 500},
            {"name": "/early", "startTime": 100, "duration": 10},
        ]
        layout = layout_waterfall(requests, correlated={1, 2}, error_related={1})

        early, late = layout.bars
        assert early.label == "/early"
        assert early.is_correlated and not early.is_error_related
        assert late.is_error_related
        assert late.color == COLOR_ERROR_RELATED


def test_pdf_marks_requests_near_console_errors():
    report = SimpleNamespace(
        id="r-2", title="Cart", description="x", type="bug", status="active", priority="high",
        url=None, user_agent="", reporter_name=None, reporter_email=None,
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        console_logs=[{"level": "error", "message": "Failed to fetch", "timestamp": "2026-03-01T10:00:01Z"}],
        network_requests=[
            {"name": "/api/cart", "startTime": "2026-03-01T10:00:00Z", "duration": 1500, "status": 502},
            {"name": "/api/ok", "startTime": "2026-03-01T10:00:00Z", "duration": 50, "status": 200},
            {"name": "/api/far", "startTime": "2026-03-01T11:00:00Z", "duration": 50, "status": 200},
        ],
        performance_metrics=None,
    )
    with patch("feedloop.reports.waterfall.layout_waterfall", wraps=layout_waterfall) as layout:
        assert build_diagnostics_pdf(report).startswith(b"%PDF")

    _, correlated, failing = layout.call_args.args
    assert correlated == {0, 1}
    assert failing == {0}



def test_pdf_with_many_requests_paginates():
    report = SimpleNamespace(
        id="r-1", title="Checkout fails", description="Nothing happens\n" * 20, type="bug",
        status="active", priority="high", url="https://shop.example.com/cart",
        user_agent="Mozilla/5.0", reporter_name="Ada", reporter_email="ada@example.com",
        created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        console_logs=[{"type": "error", "message": "boom"}, {"type": "log", "message": "ok"}],
        network_requests=[{"name": f"/api/{i}", "duration": 10 + i, "status": 200} for i in range(80)],
        performance_metrics=None,
    )
    pdf = build_diagnostics_pdf(report)
    assert pdf.startswith(b"%PDF")
    # metadata page plus the waterfall split over two pages
    assert len(re.findall(rb"/Type /Page(?!s)", pdf)) >= 3
