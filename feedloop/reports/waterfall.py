# feedloop/reports/waterfall.py
"""
Network waterfall layout + the diagnostics PDF for a single report.

The layout works in an 800pt-wide chart space (origin top-left, y grows
down); ``build_diagnostics_pdf`` scales it onto an A4 page with reportlab.
"""

from __future__ import annotations

import io
import json
import math
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas

from feedloop.exports.csv_export import extract_browser, extract_os
from feedloop.reports.correlations import epoch_ms, error_network_matches, request_failed

PADDING = 40
ROW_HEIGHT = 24
CHART_WIDTH = 800
LABEL_AREA = 200
BAR_AREA = CHART_WIDTH - PADDING * 2 - LABEL_AREA
TIME_MARKERS = 5
LABEL_CHARS = 30

COLOR_NORMAL = "#3B82F6"
COLOR_CORRELATED = "#F59E0B"
COLOR_ERROR_RELATED = "#EF4444"
COLOR_HTTP_ERROR = "#DC2626"
COLOR_REDIRECT = "#D97706"
COLOR_SLOW = "#7C2D12"

LEGEND = [
    (COLOR_NORMAL, "Normal"),
    (COLOR_CORRELATED, "Correlated"),
    (COLOR_ERROR_RELATED, "Error Related"),
    (COLOR_HTTP_ERROR, "HTTP Error"),
    (COLOR_SLOW, "Slow (>1s)"),
]


@dataclass
class WaterfallBar:
    index: int
    label: str
    info: str
    x: float
    y: float
    width: float
    color: str
    is_correlated: bool = False
    is_error_related: bool = False


@dataclass
class WaterfallLayout:
    bars: list[WaterfallBar] = field(default_factory=list)
    total_duration: float = 0.0
    height: float = PADDING * 2
    synthetic: bool = False
    markers: list[tuple[float, str]] = field(default_factory=list)


# ---------------- small helpers ----------------

def format_bytes(n: Any) -> str:
    try:
        n = float(n)
    except (TypeError, ValueError):
        return "0 B"
    if n <= 0:
        return "0 B"
    sizes = ["B", "KB", "MB", "GB"]
    i = max(0, min(int(math.floor(math.log(n, 1024))), len(sizes) - 1))
    value = round(n / (1024 ** i), 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {sizes[i]}"


def truncate_label(name: str, limit: int = LABEL_CHARS) -> str:
    return name[:limit] + "..." if len(name) > limit else name


def _number(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) and v > 0 else 0.0


def bar_color(req: dict, *, correlated: bool = False, error_related: bool = False) -> str:
    status = _number(req.get("status"))
    if error_related or req.get("error_related"):
        return COLOR_ERROR_RELATED
    if correlated:
        return COLOR_CORRELATED
    if status >= 400:
        return COLOR_HTTP_ERROR
    if status >= 300:
        return COLOR_REDIRECT
    if _number(req.get("duration")) > 1000:
        return COLOR_SLOW
    return COLOR_NORMAL


# ---------------- layout ----------------

def layout_waterfall(
    requests: Any,
    correlated: set[int] | None = None,
    error_related: set[int] | None = None,
) -> WaterfallLayout:
    """
    Place one bar per request on a shared timeline.

    ``correlated`` and ``error_related`` hold positions in ``requests``.

    Requests without a usable start time are chained after the one before
    them; when none has a start time the whole chart is such a synthetic,
    back-to-back timeline.
    """
    if not isinstance(requests, list):
        return WaterfallLayout()
    reqs = [(i, r) for i, r in enumerate(requests) if isinstance(r, dict)]
    if not reqs:
        return WaterfallLayout()

    correlated = correlated or set()
    error_related = error_related or set()
    starts = [epoch_ms(r.get("startTime", r.get("start_time"))) for _, r in reqs]
    synthetic = all(s is None for s in starts)

    timeline: list[tuple[float, int, dict]] = []
    cursor = 0.0 if synthetic else min(s for s in starts if s is not None)
    for start, (pos, req) in zip(starts, reqs):
        if start is None:
            start = cursor
        timeline.append((start, pos, req))
        cursor = max(cursor, start + _number(req.get("duration")))

    timeline.sort(key=lambda t: t[0])

    t0 = timeline[0][0]
    t1 = max(s + _number(r.get("duration")) for s, _, r in timeline)
    total = t1 - t0
    span = total if total > 0 else 1.0

    bars = []
    for i, (start, pos, req) in enumerate(timeline):
        duration = _number(req.get("duration"))
        is_corr = pos in correlated
        is_err = pos in error_related or bool(req.get("error_related"))
        name = str(req.get("name") or req.get("url") or "(request)")

        info = f"{int(duration)}ms"
        if _number(req.get("size")):
            info += f" | {format_bytes(req.get('size'))}"

        bars.append(WaterfallBar(
            index=i,
            label=truncate_label(name),
            info=info,
            x=PADDING + LABEL_AREA + ((start - t0) / span) * BAR_AREA,
            y=PADDING + i * ROW_HEIGHT,
            width=max(2.0, (duration / span) * BAR_AREA),
            color=bar_color(req, correlated=is_corr, error_related=is_err),
            is_correlated=is_corr,
            is_error_related=is_err,
        ))

    markers = [
        (PADDING + LABEL_AREA + (i / TIME_MARKERS) * BAR_AREA, f"{round((i / TIME_MARKERS) * total)}ms")
        for i in range(TIME_MARKERS + 1)
    ]

    return WaterfallLayout(
        bars=bars,
        total_duration=total,
        height=len(bars) * ROW_HEIGHT + PADDING * 2,
        synthetic=synthetic,
        markers=markers,
    )


# ---------------- pdf ----------------

def _fmt(dt) -> str:
    if not dt:
        return "-"
    if getattr(dt, "tzinfo", None) is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def _wrap_text(c: canvas.Canvas, text: str, max_width: float, font="Helvetica", size=10):
    c.setFont(font, size)
    s = str(text or "-")
    words = s.split()
    if not words:
        return ["-"]

    lines = []
    line = ""
    for w in words:
        t = (line + " " + w).strip()
        if c.stringWidth(t, font, size) <= max_width:
            line = t
            continue
        if line:
            lines.append(line)
            line = ""
        # a single word wider than the column gets split by character
        chunk = ""
        for ch in w:
            if c.stringWidth(chunk + ch, font, size) <= max_width:
                chunk += ch
            else:
                lines.append(chunk)
                chunk = ch
        line = chunk

    if line:
        lines.append(line)
    return lines or ["-"]


def _draw_kv(c: canvas.Canvas, x, y, k, v, page_width, right_margin):
    key_w = 110
    max_val_w = (page_width - right_margin) - (x + key_w)

    c.setFont("Helvetica-Bold", 10)
    c.drawString(x, y, f"{k}:")

    lines = _wrap_text(c, "-" if v in (None, "") else v, max_val_w, font="Helvetica", size=10)
    yy = y
    for ln in lines:
        c.drawString(x + key_w, yy, ln)
        yy -= 0.5 * cm
    return yy


def _console_errors(console_logs: Any) -> list[str]:
    out = []
    if not isinstance(console_logs, list):
        return out
    for entry in console_logs:
        if isinstance(entry, dict):
            level = str(entry.get("level") or entry.get("type") or "log").lower()
            if level not in ("error", "warn", "warning"):
                continue
            msg = entry.get("message") or entry.get("args") or ""
            if not isinstance(msg, str):
                msg = json.dumps(msg, default=str)
            out.append(f"[{level}] {msg}")
        elif isinstance(entry, str):
            out.append(entry)
    return out


def _draw_waterfall(c: canvas.Canvas, layout: WaterfallLayout, left: float, top: float, width: float):
    """Draw the chart with its top-left corner at (left, top); returns the bottom y."""
    scale = width / CHART_WIDTH
    chart_h = layout.height + 30

    def X(v):
        return left + v * scale

    def Y(v):
        return top - v * scale

    c.setStrokeColor(colors.HexColor("#E5E7EB"))
    c.setLineWidth(0.5)
    c.setFont("Helvetica", 7)
    for x, label in layout.markers:
        c.line(X(x), Y(PADDING), X(x), Y(layout.height - PADDING))
        c.setFillColor(colors.HexColor("#6B7280"))
        c.drawCentredString(X(x), Y(PADDING - 6), label)

    for bar in layout.bars:
        c.setFillColor(colors.HexColor(bar.color))
        c.rect(X(bar.x), Y(bar.y + 20), bar.width * scale, 16 * scale, stroke=0, fill=1)

        if bar.is_correlated:
            c.setStrokeColor(colors.HexColor(COLOR_CORRELATED))
            c.setLineWidth(1)
            c.rect(X(bar.x - 1), Y(bar.y + 21), (bar.width + 2) * scale, 18 * scale, stroke=1, fill=0)
        if bar.is_error_related:
            c.setFillColor(colors.HexColor(COLOR_HTTP_ERROR))
            c.circle(X(bar.x - 8), Y(bar.y + 12), 4 * scale, stroke=0, fill=1)

        c.setFillColor(colors.HexColor("#374151"))
        c.setFont("Helvetica", 7)
        c.drawString(X(10), Y(bar.y + 16), bar.label)
        c.setFillColor(colors.HexColor("#6B7280"))
        c.drawRightString(X(230), Y(bar.y + 16), bar.info)

    legend_y = layout.height + 5
    lx = 10
    c.setFont("Helvetica", 7)
    for color, label in LEGEND:
        c.setFillColor(colors.HexColor(color))
        c.rect(X(lx), Y(legend_y + 12), 12 * scale, 12 * scale, stroke=0, fill=1)
        c.setFillColor(colors.HexColor("#374151"))
        c.drawString(X(lx + 18), Y(legend_y + 10), label)
        lx += c.stringWidth(label, "Helvetica", 7) / scale + 40

    c.setFillColor(colors.black)
    c.setStrokeColor(colors.black)
    return top - chart_h * scale


def build_diagnostics_pdf(report) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    w, h = A4

    left = 2 * cm
    right = 2 * cm
    y = h - 2 * cm

    def ensure_space(min_y=2.5 * cm):
        nonlocal y
        if y < min_y:
            c.showPage()
            y = h - 2 * cm

    c.setFont("Helvetica-Bold", 16)
    c.drawString(left, y, "Feedloop Diagnostics")
    y -= 1.2 * cm

    ua = report.user_agent or ""
    y = _draw_kv(c, left, y, "Title", report.title, w, right)
    y = _draw_kv(c, left, y, "Report ID", report.id, w, right)
    y = _draw_kv(c, left, y, "Type", report.type, w, right)
    y = _draw_kv(c, left, y, "Status", report.status, w, right)
    y = _draw_kv(c, left, y, "Priority", report.priority, w, right)
    y = _draw_kv(c, left, y, "Reporter", report.reporter_name or report.reporter_email, w, right)
    y = _draw_kv(c, left, y, "Created", _fmt(report.created_at), w, right)
    y = _draw_kv(c, left, y, "Page URL", report.url, w, right)
    y = _draw_kv(c, left, y, "Browser", extract_browser(ua), w, right)
    y = _draw_kv(c, left, y, "OS", extract_os(ua), w, right)

    y -= 0.2 * cm
    ensure_space()

    c.setFont("Helvetica-Bold", 12)
    c.drawString(left, y, "Console Errors")
    y -= 0.8 * cm

    errors = _console_errors(report.console_logs)
    c.setFont("Helvetica", 10)
    if not errors:
        c.drawString(left, y, "- none -")
        y -= 0.6 * cm
    for line in errors:
        for ln in _wrap_text(c, f"- {line}", max_width=(w - right - left), font="Helvetica", size=10):
            ensure_space()
            c.drawString(left, y, ln)
            y -= 0.5 * cm

    matches = error_network_matches(report.console_logs, report.network_requests)
    correlated = {m.request_index for m in matches}
    failing = {i for i in correlated if request_failed(report.network_requests[i])}
    layout = layout_waterfall(report.network_requests, correlated, failing)

    c.showPage()
    y = h - 2 * cm
    c.setFont("Helvetica-Bold", 12)
    title = "Network Waterfall"
    if layout.synthetic and layout.bars:
        title += " (sequential timeline)"
    c.drawString(left, y, title)
    y -= 0.6 * cm

    if not layout.bars:
        c.setFont("Helvetica", 10)
        c.drawString(left, y, "- no network requests captured -")
    else:
        chart_w = w - left - right
        scale = chart_w / CHART_WIDTH
        # one page per slice of rows
        rows_per_page = max(1, int(((y - 2 * cm) / scale - PADDING * 2 - 30) // ROW_HEIGHT))
        for start in range(0, len(layout.bars), rows_per_page):
            if start:
                c.showPage()
                y = h - 2 * cm
            chunk = layout.bars[start:start + rows_per_page]
            page_layout = WaterfallLayout(
                bars=[
                    WaterfallBar(**{**b.__dict__, "y": PADDING + i * ROW_HEIGHT})
                    for i, b in enumerate(chunk)
                ],
                total_duration=layout.total_duration,
                height=len(chunk) * ROW_HEIGHT + PADDING * 2,
                synthetic=layout.synthetic,
                markers=layout.markers,
            )
            _draw_waterfall(c, page_layout, left, y, chart_w)

    c.save()
    pdf = buf.getvalue()
    buf.close()
    return pdf
