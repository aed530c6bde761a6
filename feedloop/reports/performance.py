# feedloop/reports/performance.py
"""
Core Web Vitals scoring for the performance metrics the widget captures.

``performance_metrics`` arrives either as ``{"web_vitals": {...}}`` (or
``webVitals``) or as a flat ``{"lcp": ..., "fcp": ...}`` mapping; both are
read the same way.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

VITALS = ("lcp", "fcp", "cls", "fid", "tti", "ttfb")
CATEGORIES = ("critical", "high", "medium", "low")

# metric -> (good, needs improvement); anything above is poor
THRESHOLDS = {
    "fcp": (1000, 3000),
    "lcp": (2500, 4000),
    "cls": (0.1, 0.25),
    "fid": (100, 300),
    "tti": (3800, 7300),
    "ttfb": (600, 1600),
}

WEIGHTS = {"lcp": 0.25, "fcp": 0.15, "cls": 0.25, "fid": 0.20, "tti": 0.10, "ttfb": 0.05}
STATUS_SCORES = {"good": 90, "needs-improvement": 50, "poor": 10}

RECOMMENDATIONS = {
    "lcp": "Optimize Largest Contentful Paint by improving image loading and reducing server response times",
    "fcp": "Improve First Contentful Paint by optimizing critical rendering path and minimizing JavaScript execution",
    "cls": "Reduce Cumulative Layout Shift by setting explicit dimensions for images and avoiding dynamic content insertion",
    "fid": "Improve First Input Delay by reducing JavaScript execution time and breaking up long tasks",
    "tti": "Optimize Time to Interactive by reducing main thread work and eliminating unused JavaScript",
}
MAX_RECOMMENDATIONS = 3


def _metric(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) and v >= 0 else None


def web_vitals(performance_metrics: Any) -> dict[str, float]:
    """The usable vitals of a report; empty when nothing was captured."""
    if not isinstance(performance_metrics, dict):
        return {}
    source = performance_metrics.get("web_vitals") or performance_metrics.get("webVitals")
    if not isinstance(source, dict):
        source = performance_metrics

    out = {}
    for name in VITALS:
        value = _metric(source.get(name))
        if value is not None:
            out[name] = value
    return out


def metric_status(name: str, value: float) -> str:
    good, needs_improvement = THRESHOLDS[name]
    if value <= good:
        return "good"
    if value <= needs_improvement:
        return "needs-improvement"
    return "poor"


def categorize_performance(vitals: dict[str, float]) -> dict:
    scores = {name: metric_status(name, value) for name, value in vitals.items()}

    weighted = sum(STATUS_SCORES[status] * WEIGHTS[name] for name, status in scores.items())
    total_weight = sum(WEIGHTS[name] for name in scores)
    score = round(weighted / total_weight) if total_weight else 0

    if score >= 80:
        overall, details = "low", "Excellent performance across all Core Web Vitals metrics"
    elif score >= 60:
        overall, details = "medium", "Good performance with some metrics needing minor improvements"
    elif score >= 40:
        overall, details = "high", "Performance issues detected that impact user experience"
    else:
        overall, details = "critical", "Significant performance problems requiring immediate attention"

    return {"overall": overall, "score": score, "details": details, "scores": scores}


def performance_recommendations(vitals: dict[str, float]) -> list[str]:
    return [
        text for name, text in RECOMMENDATIONS.items()
        if name in vitals and vitals[name] > THRESHOLDS[name][0]
    ]


def performance_analysis(vitals: dict[str, float]) -> dict | None:
    if not vitals:
        return None
    category = categorize_performance(vitals)
    return {
        "category": category["overall"],
        "score": category["score"],
        "details": category["details"],
        "metric_status": category["scores"],
        "recommendations": performance_recommendations(vitals)[:MAX_RECOMMENDATIONS],
    }


def performance_statistics(all_vitals: Iterable[dict[str, float]]) -> dict:
    all_vitals = list(all_vitals)
    if not all_vitals:
        return {"total_reports": 0, "averages": None, "distribution": None}

    averages = {}
    for name in VITALS:
        values = [v[name] for v in all_vitals if name in v]
        averages[name] = round(sum(values) / len(values), 2) if values else None

    distribution = {c: 0 for c in CATEGORIES}
    for vitals in all_vitals:
        if vitals:
            distribution[categorize_performance(vitals)["overall"]] += 1

    return {
        "total_reports": len(all_vitals),
        "averages": averages,
        "distribution": distribution,
    }
