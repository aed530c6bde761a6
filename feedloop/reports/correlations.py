# feedloop/reports/correlations.py
"""
Error correlation across captured diagnostics.

Four kinds of correlation are detected:

- Error-Network: a console error logged while (or shortly before/after) a
  network request was in flight.
- Performance-Resource: a poor LCP together with slow resources.
- Timing-Sequence: console errors following each other in quick succession.
- Pattern-Match: the same well-known error shape recurring across reports.

Every function here works on plain report objects (anything with the
``Report`` diagnostic attributes) and never touches the database.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable
from urllib.parse import urlparse

from feedloop.reports.performance import web_vitals

CORRELATION_TYPES = ("Error-Network", "Performance-Resource", "Timing-Sequence", "Pattern-Match")

ERROR_NETWORK_WINDOW_MS = 5000
ERROR_CASCADE_WINDOW_MS = 2000
POOR_LCP_MS = 4000
SLOW_RESOURCE_MS = 1000
HIGH_CONFIDENCE = 80

ERROR_PATTERNS = [
    (re.compile(r"Cannot read propert(?:y|ies) .*of undefined"), "undefined-property-access",
     "Undefined property access pattern"),
    (re.compile(r"TypeError: .* is not a function"), "not-a-function", "Function call on non-function pattern"),
    (re.compile(r"ReferenceError: .* is not defined"), "undefined-reference", "Undefined variable reference pattern"),
    (re.compile(r"NetworkError|Failed to fetch|ERR_NETWORK"), "network-error", "Network connectivity error pattern"),
]


@dataclass
class ConsoleError:
    index: int
    message: str
    timestamp: Any
    at: float | None


@dataclass
class ErrorNetworkMatch:
    error_index: int
    request_index: int
    gap_ms: float
    confidence: int


# ---------------- parsing ----------------

def epoch_ms(value: Any) -> float | None:
    """Epoch millis from an ISO string or a number; None when unusable."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if value > 0 else None
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.timestamp() * 1000.0
    return None


def _number(value: Any) -> float:
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return 0.0


def request_start(req: dict) -> float | None:
    return epoch_ms(req.get("startTime", req.get("start_time")))


def request_label(req: dict) -> str:
    return str(req.get("name") or req.get("url") or "(request)")


def request_failed(req: dict) -> bool:
    return _number(req.get("status")) >= 400


def console_errors(console_logs: Any) -> list[ConsoleError]:
    if not isinstance(console_logs, list):
        return []
    out = []
    for i, entry in enumerate(console_logs):
        if not isinstance(entry, dict):
            continue
        if str(entry.get("level") or entry.get("type") or "").lower() != "error":
            continue
        msg = entry.get("message") or entry.get("args") or ""
        if not isinstance(msg, str):
            msg = json.dumps(msg, default=str)
        ts = entry.get("timestamp")
        out.append(ConsoleError(index=i, message=msg, timestamp=ts, at=epoch_ms(ts)))
    return out


def _iso(dt) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


# ---------------- per report ----------------

def error_network_matches(console_logs: Any, network_requests: Any) -> list[ErrorNetworkMatch]:
    """
    Pair console errors with the requests around them.

    The gap is zero while the request is in flight, otherwise the distance
    to its nearest edge; pairs closer than ERROR_NETWORK_WINDOW_MS match.
    """
    errors = [e for e in console_errors(console_logs) if e.at is not None]
    if not errors or not isinstance(network_requests, list):
        return []

    out = []
    for ri, req in enumerate(network_requests):
        if not isinstance(req, dict):
            continue
        start = request_start(req)
        if start is None:
            continue
        end = start + _number(req.get("duration"))

        for err in errors:
            if start <= err.at <= end:
                gap = 0.0
            else:
                gap = min(abs(err.at - start), abs(err.at - end))
            if gap < ERROR_NETWORK_WINDOW_MS:
                confidence = round(max(50, 90 - (gap / 1000) * 5))
                out.append(ErrorNetworkMatch(err.index, ri, gap, confidence))
    return out


def error_network_correlations(reports: Iterable) -> list[dict]:
    out = []
    for report in reports:
        requests = report.network_requests
        errors = {e.index: e for e in console_errors(report.console_logs)}
        for m in error_network_matches(report.console_logs, requests):
            err = errors[m.error_index]
            req = requests[m.request_index]
            name = request_label(req)
            out.append({
                "id": f"error-network-{report.id}-{m.error_index}-{m.request_index}",
                "type": "Error-Network",
                "confidence": m.confidence,
                "description": f'Error "{err.message}" correlates with network request to {name}',
                "evidence": [
                    {"type": "error", "message": err.message, "timestamp": err.timestamp},
                    {
                        "type": "network_request",
                        "url": name,
                        "method": req.get("method"),
                        "status": req.get("status"),
                        "duration": req.get("duration"),
                        "timestamp": req.get("startTime", req.get("start_time")),
                        "failed": request_failed(req),
                    },
                ],
                "timeline": [
                    {"timestamp": req.get("startTime", req.get("start_time")), "event": "Network request started",
                     "type": "network"},
                    {"timestamp": err.timestamp, "event": "Error occurred", "type": "error"},
                ],
                "related_reports": [report.id],
                "pattern": None,
                "first_seen": err.timestamp,
                "last_seen": err.timestamp,
                "frequency": 1,
            })
    return out


def performance_resource_correlations(reports: Iterable) -> list[dict]:
    out = []
    for report in reports:
        lcp = web_vitals(report.performance_metrics).get("lcp")
        if lcp is None or lcp <= POOR_LCP_MS or not isinstance(report.network_requests, list):
            continue

        slow = [
            r for r in report.network_requests
            if isinstance(r, dict) and _number(r.get("duration")) > SLOW_RESOURCE_MS
        ]
        if not slow:
            continue

        seen = _iso(report.created_at)
        out.append({
            "id": f"perf-resource-{report.id}-lcp",
            "type": "Performance-Resource",
            "confidence": round(min(95, 60 + len(slow) * 10)),
            "description": f"Poor LCP ({lcp:g}ms) correlates with {len(slow)} slow resource(s)",
            "evidence": [{"type": "performance_metric", "metric": "lcp", "value": lcp, "threshold": POOR_LCP_MS}]
            + [{"type": "slow_resource", "url": request_label(r), "duration": r.get("duration")} for r in slow],
            "timeline": [
                {
                    "timestamp": r.get("startTime", r.get("start_time")) or seen,
                    "event": f"Slow resource: {request_label(r)} ({r.get('duration')}ms)",
                    "type": "resource",
                }
                for r in slow
            ],
            "related_reports": [report.id],
            "pattern": "slow-resources-poor-lcp",
            "first_seen": seen,
            "last_seen": seen,
            "frequency": 1,
        })
    return out


def timing_sequence_correlations(reports: Iterable) -> list[dict]:
    out = []
    for report in reports:
        errors = [e for e in console_errors(report.console_logs) if e.at is not None]
        for i, (first, second) in enumerate(zip(errors, errors[1:])):
            diff = abs(second.at - first.at)
            if diff >= ERROR_CASCADE_WINDOW_MS:
                continue
            out.append({
                "id": f"timing-sequence-{report.id}-{i}",
                "type": "Timing-Sequence",
                "confidence": round(max(60, 85 - (diff / 1000) * 10)),
                "description": f'Error sequence detected: "{first.message}" followed by "{second.message}"',
                "evidence": [{
                    "type": "error_sequence",
                    "first_error": first.message,
                    "second_error": second.message,
                    "time_difference": diff,
                }],
                "timeline": [
                    {"timestamp": first.timestamp, "event": f"First error: {first.message}", "type": "error"},
                    {"timestamp": second.timestamp, "event": f"Second error: {second.message}", "type": "error"},
                ],
                "related_reports": [report.id],
                "pattern": "error-cascade",
                "first_seen": first.timestamp,
                "last_seen": second.timestamp,
                "frequency": 1,
            })
    return out


# ---------------- across reports ----------------

def pattern_match_correlations(reports: Iterable) -> list[dict]:
    matches: dict[str, list[tuple[ConsoleError, Any]]] = {}
    descriptions = {}
    for report in reports:
        for err in console_errors(report.console_logs):
            for regex, name, description in ERROR_PATTERNS:
                if regex.search(err.message):
                    matches.setdefault(name, []).append((err, report))
                    descriptions[name] = description

    out = []
    for name, found in matches.items():
        if len(found) < 2:
            continue
        seen = [e.timestamp or _iso(r.created_at) for e, r in found]
        ordered = sorted(seen, key=lambda s: epoch_ms(s) or 0.0)
        out.append({
            "id": f"pattern-match-{name}",
            "type": "Pattern-Match",
            "confidence": round(min(95, 50 + len(found) * 15)),
            "description": f"{descriptions[name]} detected in {len(found)} report(s)",
            "evidence": [
                {"type": "pattern_match", "message": e.message, "timestamp": e.timestamp, "report_id": r.id}
                for e, r in found
            ],
            "timeline": [
                {"timestamp": e.timestamp, "event": f"Pattern match: {e.message}", "type": "error", "report_id": r.id}
                for e, r in found
            ],
            "related_reports": list(dict.fromkeys(r.id for _, r in found)),
            "pattern": name,
            "first_seen": ordered[0],
            "last_seen": ordered[-1],
            "frequency": len(found),
        })
    return out


ANALYZERS = {
    "Error-Network": error_network_correlations,
    "Performance-Resource": performance_resource_correlations,
    "Timing-Sequence": timing_sequence_correlations,
    "Pattern-Match": pattern_match_correlations,
}


def analyze_correlations(reports: list, *, types: Iterable[str] | None = None, min_confidence: int = 50) -> list[dict]:
    """All correlations at or above ``min_confidence``, most confident first."""
    wanted = [t for t in CORRELATION_TYPES if not types or t in types]
    found = []
    for name in wanted:
        found.extend(c for c in ANALYZERS[name](reports) if c["confidence"] >= min_confidence)
    found.sort(key=lambda c: c["confidence"], reverse=True)
    return found


def url_error_patterns(reports: Iterable) -> list[dict]:
    by_path: dict[str, list] = {}
    for report in reports:
        if not report.url or not console_errors(report.console_logs):
            continue
        path = urlparse(report.url).path or "/"
        by_path.setdefault(path, []).append(report)

    out = []
    for path, group in by_path.items():
        if len(group) < 2:
            continue
        stamps = sorted(_iso(r.created_at) for r in group if r.created_at)
        out.append({
            "type": "url-error-frequency",
            "description": f"Multiple error reports from URL path: {path}",
            "occurrences": len(group),
            "affected_reports": [r.id for r in group],
            "first_seen": stamps[0] if stamps else None,
            "last_seen": stamps[-1] if stamps else None,
        })
    return out


def correlation_insights(correlations: list[dict]) -> list[dict]:
    def of_type(name):
        return [c for c in correlations if c["type"] == name]

    insights = []

    perf = of_type("Performance-Resource")
    if perf:
        insights.append({
            "type": "Performance",
            "title": "Resource Loading Issues Detected",
            "description": f"{len(perf)} correlations found between poor performance metrics and slow resource loading",
            "impact": "High",
            "recommendation": "Optimize resource loading by implementing code splitting, lazy loading, and CDN usage",
            "affected_reports": len(perf),
        })

    patterns = of_type("Pattern-Match")
    if patterns:
        insights.append({
            "type": "Error Pattern",
            "title": "Recurring Error Patterns Found",
            "description": f"{len(patterns)} error patterns detected across multiple reports",
            "impact": "Medium",
            "recommendation": "Add null checks and guard clauses around the recurring error sites",
            "affected_reports": sum(c["frequency"] for c in patterns),
        })

    network = of_type("Error-Network")
    if network:
        insights.append({
            "type": "Network Issue",
            "title": "Network-Related Errors Detected",
            "description": f"{len(network)} correlations found between errors and network requests",
            "impact": "Medium",
            "recommendation": "Handle failed network requests explicitly and add retries where safe",
            "affected_reports": len(network),
        })

    strong = [c for c in correlations if c["confidence"] > HIGH_CONFIDENCE]
    if strong:
        insights.append({
            "type": "User Experience",
            "title": "High-Confidence Error Correlations",
            "description": f"{len(strong)} high-confidence correlations may significantly impact user experience",
            "impact": "High",
            "recommendation": "Prioritize fixing these high-confidence correlations to improve user experience",
            "affected_reports": len(strong),
        })

    return insights


def correlation_summary(correlations: list[dict], time_window_hours: int) -> dict:
    total = len(correlations)
    return {
        "total_correlations": total,
        "confidence_score": round(sum(c["confidence"] for c in correlations) / total) if total else 0,
        "types_found": list(dict.fromkeys(c["type"] for c in correlations)),
        "analysis_window": f"{time_window_hours} hours",
    }
