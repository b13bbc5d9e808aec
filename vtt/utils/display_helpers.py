"""
Display Helpers - Convert results to human-readable format

Used by the console harness and the web templates.
"""

from typing import Any, Dict, List, Optional

from vtt.utils.helpers import parse_iso


# Metric key -> label, in display order
METRIC_LABELS = {
    'accuracy': 'Accuracy',
    'precision': 'Precision',
    'recall': 'Recall',
    'f1Score': 'F1 Score',
    'specificity': 'Specificity',
}


def format_duration(start_time: Optional[str], end_time: Optional[str]) -> str:
    """
    Human-readable time between two ISO timestamps.

    Examples:
        >>> format_duration('2025-01-01T10:00:00+00:00', '2025-01-01T11:02:05+00:00')
        '1h 2m 5s'
        >>> format_duration(None, '2025-01-01T10:00:00+00:00')
        'N/A'
    """
    start = parse_iso(start_time)
    end = parse_iso(end_time)
    if start is None or end is None:
        return "N/A"

    total_seconds = int((end - start).total_seconds())
    if total_seconds < 0:
        return "N/A"

    hours = (total_seconds // 3600) % 24
    minutes = (total_seconds // 60) % 60
    seconds = total_seconds % 60

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if seconds > 0 or (hours == 0 and minutes == 0):
        parts.append(f"{seconds}s")
    return " ".join(parts) or "0s"


def duration_minutes(start_time: Optional[str], end_time: Optional[str]) -> float:
    """Minutes between two timestamps, rounded to 0.1 (0.0 if unknown)."""
    start = parse_iso(start_time)
    end = parse_iso(end_time)
    if start is None or end is None:
        return 0.0
    return round((end - start).total_seconds() / 60, 1)


def category_status(results: Optional[Dict[str, Any]]) -> str:
    """Dashboard card caption for a category."""
    if not results:
        return "Not started"
    if results.get('completed'):
        return "Test completed"
    answered = results.get('answeredQuestions', 0)
    if answered > 0:
        return f"{answered}/{results.get('totalQuestions', 0)} questions answered"
    return "Not started"


def format_category_results(category: str, results: Optional[Dict[str, Any]]) -> List[str]:
    """Lines describing one category's results."""
    if not results:
        return [f"{category}: test not completed or data unavailable"]

    lines = [
        f"{category} ({'Completed' if results.get('completed') else 'In Progress'})",
        f"  Score: {results.get('correctAnswers', 0)} / {results.get('answeredQuestions', 0)}",
        f"  Answered: {results.get('answeredQuestions', 0)} / {results.get('totalQuestions', 0)}",
    ]
    for key, label in METRIC_LABELS.items():
        value = results.get(key, 0.0)
        suffix = "" if key == 'f1Score' else "%"
        lines.append(f"  {label}: {value:.1f}{suffix}")
    lines.append(f"  Time Taken: {format_duration(results.get('startTime'), results.get('endTime'))}")
    if results.get('degraded'):
        lines.append("  Note: placeholder images were used")
    if results.get('comment'):
        lines.append(f"  Comment: {results['comment']}")
    return lines


def format_export_summary(export_doc: Dict[str, Any]) -> str:
    """Multi-line text summary of an export document."""
    info = export_doc.get('testerInfo', {})
    lines = [
        f"Tester: {info.get('tester', '')}",
        f"Supervisor: {info.get('supervisor', '')}",
        f"Institution: {info.get('institution', '')}",
    ]
    for key in ('faculty', 'department', 'speciality'):
        if info.get(key):
            lines.append(f"{key.capitalize()}: {info[key]}")
    lines.append("")

    for category, results in export_doc.get('results', {}).items():
        lines.extend(format_category_results(category, results))
        lines.append("")

    overall = export_doc.get('overall', {})
    lines.append("Overall (pooled)")
    lines.append(f"  Answered: {overall.get('totalAnswered', 0)} / {overall.get('totalQuestions', 0)}")
    for key, label in METRIC_LABELS.items():
        suffix = "" if key == 'f1Score' else "%"
        lines.append(f"  {label}: {overall.get(key, 0.0):.2f}{suffix}")
    matrix = overall.get('confusionMatrix', {})
    lines.append(
        f"  TP={matrix.get('truePositives', 0)} TN={matrix.get('trueNegatives', 0)} "
        f"FP={matrix.get('falsePositives', 0)} FN={matrix.get('falseNegatives', 0)}"
    )
    return "\n".join(lines)
